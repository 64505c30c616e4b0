import uvicorn

from local_ai_toolkit.api.app import app
from local_ai_toolkit.core.di import get_config


def main() -> None:
    cfg = get_config()
    uvicorn.run(app, host=cfg.server.host, port=cfg.server.port)


if __name__ == "__main__":
    main()

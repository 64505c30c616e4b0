from enum import Enum


class ErrorKind(str, Enum):
    """Stable error codes shared by the service wrappers and the HTTP surface."""

    INVALID_IMAGE = "InvalidImage"
    INVALID_AUDIO = "InvalidAudio"
    INVALID_TEXT = "InvalidText"
    INVALID_CONFIGURATION = "InvalidConfiguration"
    VOICE_NOT_FOUND = "VoiceNotFound"
    NOT_AUTHORIZED = "NotAuthorized"
    RECOGNIZER_NOT_AVAILABLE = "RecognizerNotAvailable"
    SERVICE_UNAVAILABLE = "ServiceUnavailable"
    ALREADY_PLAYING = "AlreadyPlaying"
    ALREADY_RECORDING = "AlreadyRecording"
    NOT_RECORDING = "NotRecording"
    RECOGNITION_FAILED = "RecognitionFailed"
    SYNTHESIZE_FAILED = "SynthesizeFailed"
    FILE_WRITE_FAILED = "FileWriteFailed"
    CANCELLED = "Cancelled"

    # Gateway-only kinds
    UNAUTHORIZED = "Unauthorized"
    PAYLOAD_TOO_LARGE = "PayloadTooLarge"
    INVALID_REQUEST = "InvalidRequest"
    TIMEOUT = "Timeout"


_STATUS_BY_KIND: dict[ErrorKind, int] = {
    ErrorKind.INVALID_IMAGE: 400,
    ErrorKind.INVALID_AUDIO: 400,
    ErrorKind.INVALID_TEXT: 400,
    ErrorKind.INVALID_CONFIGURATION: 400,
    ErrorKind.VOICE_NOT_FOUND: 400,
    ErrorKind.UNAUTHORIZED: 401,
    ErrorKind.NOT_AUTHORIZED: 403,
    ErrorKind.ALREADY_PLAYING: 409,
    ErrorKind.ALREADY_RECORDING: 409,
    ErrorKind.NOT_RECORDING: 409,
    ErrorKind.PAYLOAD_TOO_LARGE: 413,
    ErrorKind.INVALID_REQUEST: 422,
    ErrorKind.CANCELLED: 499,
    ErrorKind.RECOGNITION_FAILED: 500,
    ErrorKind.SYNTHESIZE_FAILED: 500,
    ErrorKind.FILE_WRITE_FAILED: 500,
    ErrorKind.RECOGNIZER_NOT_AVAILABLE: 503,
    ErrorKind.SERVICE_UNAVAILABLE: 503,
    ErrorKind.TIMEOUT: 504,
}


class CapabilityError(Exception):
    """Normalized failure raised at a service wrapper boundary.

    - kind: stable error code, see ErrorKind
    - message: human-readable description, safe to return to clients
    - cause: underlying engine or I/O exception, kept for diagnostics only
    """

    def __init__(self, kind: ErrorKind, message: str, cause: BaseException | None = None) -> None:
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.cause = cause

    @property
    def status_code(self) -> int:
        return status_for(self.kind)

    def __str__(self) -> str:
        return f"{self.kind.value}: {self.message}"


def status_for(kind: ErrorKind) -> int:
    return _STATUS_BY_KIND.get(kind, 500)

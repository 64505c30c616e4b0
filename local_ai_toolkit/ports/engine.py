"""Exceptions adapters raise so service wrappers can classify engine failures."""


class EngineError(RuntimeError):
    """Engine call failed for a reason not covered by a narrower class."""


class UnsupportedInputError(EngineError):
    """Input could not be decoded by the engine (corrupt image or audio)."""


class EngineUnavailableError(EngineError):
    """Engine, language model or device is not available on this host."""


class DevicePermissionError(EngineError):
    """The operating system denied access to a capture device."""

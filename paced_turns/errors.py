"""Exception types raised by paced_turns."""


class PacedTurnsError(Exception):
    """Base class for all paced_turns errors."""


class ConfigValidationError(PacedTurnsError, ValueError):
    """Raised when a turns configuration is out of range or malformed.

    Configuration is never silently clamped: any invalid field rejects
    the whole configuration.
    """


class StreamParseError(PacedTurnsError, ValueError):
    """Raised when a streamed fragment cannot be decoded.

    Attributes:
        line: The raw line that failed to parse.
    """

    def __init__(self, message: str, line: str = ""):
        super().__init__(message)
        self.line = line


class TransportError(PacedTurnsError):
    """Raised when a continuation request fails at the transport level."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code

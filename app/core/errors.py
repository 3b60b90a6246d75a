class ParseError(ValueError):
    """Raised when a raw telemetry payload is not a JSON object."""


class InvalidRangeError(ValueError):
    """Raised when a range bound cannot be read as an instant."""

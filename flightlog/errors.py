"""Error taxonomy for the extraction pipeline.

Only ``ToolError`` is meant to escape to the caller. ``ServiceError`` and
``ParseError`` are raised and caught inside the vision agent and end up as
data on a ``PageExtractionResult``.
"""


class FlightLogError(Exception):
    pass


class ToolError(FlightLogError):
    """Poppler utility missing, failed, or produced unusable output."""


class ServiceError(FlightLogError):
    """The vision service call failed at the transport/API layer."""

    def __init__(self, message: str, page_number: int = 0):
        super().__init__(message)
        self.page_number = page_number


class ParseError(FlightLogError):
    """Model output did not contain extractable JSON."""

    def __init__(self, message: str, raw_text: str = ""):
        super().__init__(message)
        self.raw_text = raw_text

from typing import Optional


class PerfScopeError(Exception):
    """Base class for every error raised by perfscope."""


class ParseFailure(PerfScopeError, ValueError):
    """
    A single trace record could not be normalised into a span.

    The parser catches this for each record and drops the record, so callers
    only see it when they normalise records themselves.
    """

    def __init__(self, message: str, record=None):
        super().__init__(message)
        self.record = record


class FetchFailure(PerfScopeError):
    """
    A call to the Run Execution Service failed.

    Args:
        message (str): Description of the failure, usually the underlying error message.
        url (Optional[str]): The URL that was requested.
        status_code (Optional[int]): HTTP status when the service answered, None on
            transport errors.
    """

    def __init__(
        self,
        message: str,
        url: Optional[str] = None,
        status_code: Optional[int] = None,
    ):
        super().__init__(message)
        self.message = message
        self.url = url
        self.status_code = status_code

    def __str__(self) -> str:
        parts = [self.message]
        if self.status_code is not None:
            parts.append(f"status={self.status_code}")
        if self.url:
            parts.append(f"url={self.url}")
        return " ".join(parts)


class ValidationFailure(PerfScopeError, ValueError):
    """An input (sweep range, parameter, zoom, speed, scenario) is invalid."""

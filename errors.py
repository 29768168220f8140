"""Input-format errors.

These are the only failures that abort a run. Business-rule rejections
(duplicate ids, insufficient funds, bad disputes, locked accounts) are
never raised; the processor drops them silently.
"""

from typing import Optional


class EngineError(Exception):
    """Base engine error."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class InputFormatError(EngineError):
    """The input stream does not have the expected shape."""

    def __init__(self, message: str, line: Optional[int] = None) -> None:
        self.line = line
        if line is not None:
            message = f"line {line}: {message}"
        super().__init__(message)


class InvalidHeaderError(InputFormatError):
    def __init__(self, found: list[str]) -> None:
        self.found = found
        super().__init__(
            f"Invalid header {found!r}, expected ['type', 'client', 'tx', 'amount']",
            line=1,
        )


class InvalidRecordError(InputFormatError):
    def __init__(self, line: int, detail: str) -> None:
        self.detail = detail
        super().__init__(f"Invalid record: {detail}", line=line)

"""Shared error types."""

from __future__ import annotations

from typing import Iterator


class TraceNotFoundError(LookupError):
    """A requested trace does not exist."""

    def __init__(self, message: str = "trace not found") -> None:
        super().__init__(message)


class SearchKeyValueNotFoundError(LookupError):
    """A requested key/value pair was not found."""

    def __init__(self, message: str = "key/value not found") -> None:
        super().__init__(message)


class UnsupportedError(Exception):
    """An operation is not supported."""

    def __init__(self, message: str = "unsupported") -> None:
        super().__init__(message)


class MultiError(Exception):
    """A collection of errors reported together."""

    def __init__(self, errors: list[BaseException] | None = None) -> None:
        super().__init__()
        self.errors: list[BaseException] = []
        for err in errors or ():
            self.add(err)

    def add(self, err: BaseException | None) -> None:
        """Add an error, flattening nested MultiErrors; None is ignored."""
        if err is None:
            return
        if isinstance(err, MultiError):
            self.errors.extend(err.errors)
        else:
            self.errors.append(err)

    def check(self) -> None:
        """Raise this error if it holds any errors."""
        if self.errors:
            raise self

    def __len__(self) -> int:
        return len(self.errors)

    def __iter__(self) -> Iterator[BaseException]:
        return iter(self.errors)

    def __str__(self) -> str:
        joined = "; ".join(str(err) for err in self.errors)
        if len(self.errors) > 1:
            return f"{len(self.errors)} errors: {joined}"
        return joined


def is_request_body_too_large(err: BaseException | None) -> bool:
    """Whether the error reports an oversized HTTP request body."""
    return err is not None and "http: request body too large" in str(err)
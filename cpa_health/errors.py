from __future__ import annotations


class CpaHealthError(Exception):
    """Base class for every error raised by this package."""


class IngestionError(CpaHealthError):
    """The input source could not be read (missing, unreachable, timed out, too large)."""


class InputError(CpaHealthError):
    """The input text was read but does not describe a valid dataset."""


class MalformedInputError(InputError):
    pass


class MissingFieldError(InputError, KeyError):
    def __str__(self) -> str:
        # KeyError quotes its message; keep it readable.
        return Exception.__str__(self)


class DimensionMismatchError(CpaHealthError, ValueError):
    pass


class EmptyDatasetError(CpaHealthError, ValueError):
    pass

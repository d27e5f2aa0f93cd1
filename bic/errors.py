from __future__ import annotations


class CompressError(Exception):
    """Base class for every failure raised by the pipeline."""


class DecodeError(CompressError):
    """Input bytes are unreadable or in an unsupported format."""


class ResizeError(CompressError):
    pass


class EncodeError(CompressError):
    pass


class Cancelled(CompressError):
    """The batch was cleared (or torn down) while the request was in flight."""


class InvariantViolation(CompressError):
    """
    Internal consistency failure, e.g. updating a record index that does
    not exist or moving a record backwards in its lifecycle.

    Never recorded on a file; always propagates to whoever drives the run.
    """

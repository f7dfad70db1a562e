"""Exception types raised inside the gap checker."""


class GapCheckError(Exception):
    """Base class for every error raised by gapcheck."""


class RecordError(GapCheckError):
    """A single input record could not be turned into a candidate."""


class ParseError(RecordError):
    """The record (or its prime field) cannot be decoded."""


class ExpressionError(ParseError):
    """A closed-form prime expression is malformed or too large."""


class ResourceError(GapCheckError):
    """An input, output or checkpoint file cannot be opened or written.

    Fatal: the run stops with a non-zero exit status.
    """


class CheckpointIntegrityError(GapCheckError):
    """A persisted checkpoint or sieve snapshot failed its checks."""


class HelperUnavailable(GapCheckError):
    """The external primality helper could not be launched."""

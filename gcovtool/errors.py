"""error taxonomy for gcov artifact decoding and reduction"""


class GcovError(Exception):
    """Base exception for gcov decoding, matching or reduction errors."""

    pass


class TruncatedInput(GcovError):
    """The buffer ended in the middle of a read."""

    pass


class UnsupportedVersion(GcovError):
    """Unrecognized magic number or format version."""

    pass


class MalformedRecord(GcovError):
    """A record's tag, length or body is inconsistent."""

    pass


class StructuralMismatch(GcovError):
    """A data file does not have the shape of the graph it is paired with."""

    pass


class UnresolvedFlow(GcovError):
    """Arc and block counts could not be derived consistently."""

    pass

"""Error taxonomy shared by the grant store, evaluator and timeline."""


class SharingError(Exception):
    """Base class for every error raised by the sharing core."""


class PermissionDenied(SharingError):
    """The caller lacks the access level the operation requires."""


class NotFound(SharingError):
    """A grant, patient or user does not exist (or is no longer active)."""


class InvalidArgument(SharingError):
    """The request is malformed: self-grant, unknown level, unknown ids."""


class ConflictRace(SharingError):
    """A concurrent write for the same (patient, grantee) pair won the slot."""


class SourceUnavailable(SharingError):
    """Backing storage failed; the caller may retry."""

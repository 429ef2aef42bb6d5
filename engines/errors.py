"""
Efetivo Navigator — Error Taxonomy
Every error is recoverable: the session keeps running and the caller decides
how to surface it. Validation / in-use errors leave state untouched.
"""


class RosterError(Exception):
    """Base for every error raised by the engines."""
    status = 400

    def __init__(self, message, **details):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self):
        out = {'error': self.message, 'type': type(self).__name__}
        if self.details:
            out['details'] = self.details
        return out


class ValidationError(RosterError):
    """Missing required field, bad value or broken invariant."""


class DuplicateNameError(ValidationError):
    pass


class InvalidParentError(ValidationError):
    pass


class SelfParentError(ValidationError):
    pass


class CycleError(ValidationError):
    pass


class InUseError(RosterError):
    """Deletion blocked: the entry is referenced by at least one person."""
    status = 409


class HasChildrenError(RosterError):
    """Deletion blocked: other units declare this one as parent."""
    status = 409


class ImportFormatError(RosterError):
    status = 422


class PersistenceError(RosterError):
    """Blob store write failed. In-memory state is kept."""
    status = 500

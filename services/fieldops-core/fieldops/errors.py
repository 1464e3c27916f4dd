class FieldOpsError(Exception):
    """Base class for errors raised inside the orchestration pipeline."""


class ConfigurationError(FieldOpsError):
    """A backend was selected or called without the credentials it needs."""


class CollaboratorUnavailable(FieldOpsError):
    """An external collaborator is down, timed out, or returned garbage."""


class StorageUnavailable(CollaboratorUnavailable):
    """The session mirror could not be written; in-process state is intact."""


class ValidationError(FieldOpsError):
    """User input or action parameters were rejected.

    The message is shown to the user as-is, so keep it corrective.
    """


class InternalError(FieldOpsError):
    """Unexpected failure caught at the top of the pipeline."""

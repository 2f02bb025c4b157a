"""Error taxonomy shared by the services and the HTTP layer."""


class OrderDeskError(Exception):
    """Base class for errors that carry a caller-facing message."""

    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationFailed(OrderDeskError):
    """Malformed or out-of-range input, detected before any write."""

    status_code = 400


class NotFound(OrderDeskError):
    """Referenced order, document or archive entry does not exist."""

    status_code = 404


class CreationFailed(OrderDeskError):
    """Order-number collisions exhausted the retry budget."""

    status_code = 500


ConflictRetryExhausted = CreationFailed


class SchemaDriftHandled(OrderDeskError):
    """An optional table or column is missing; caught where it is raised."""


class StorageBestEffortFailure(OrderDeskError):
    """Blob deletion failed; logged by the caller and never re-raised."""

"""Error taxonomy for lifecycle operations.

Every state-changing engine call either returns its result or raises one of
these. Store failures surface separately as storage.database.StoreError.
"""


class LifecycleError(Exception):
    """Base for all lifecycle failures."""

    def __init__(self, message: str, entity: str | None = None, entity_id: int | None = None):
        super().__init__(message)
        self.entity = entity
        self.entity_id = entity_id


class NotFound(LifecycleError):
    """Referenced entity does not exist."""


class Forbidden(LifecycleError):
    """Actor has no rights over the entity (wrong owner, self-response, wrong role)."""


class InvalidState(LifecycleError):
    """Transition attempted from a status that does not permit it."""


class AlreadyResolved(LifecycleError):
    """Lost a race: the order already has an accepted response or deal."""


class Unavailable(LifecycleError):
    """A legacy match commit found one side no longer active."""


class ValidationError(LifecycleError):
    """Malformed input."""

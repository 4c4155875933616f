"""Registration-time errors. Runtime faults are returned as Error responses."""


class RegistryError(Exception):
    """Base class for handler registration failures."""


class ValidationError(RegistryError):
    """Descriptor or handler does not satisfy the registration contract."""


class DuplicateIdError(RegistryError):
    """A handler with the same id is already registered."""

    def __init__(self, handler_id: str) -> None:
        super().__init__(f"Handler with id '{handler_id}' is already registered")
        self.handler_id = handler_id

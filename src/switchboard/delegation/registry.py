"""Handler Registry - In-memory map of handler ids to functions and descriptors."""

from __future__ import annotations

import dataclasses
from collections.abc import Iterator, Mapping
from typing import Any

from switchboard.delegation.exceptions import DuplicateIdError, ValidationError
from switchboard.delegation.models import Handler, HandlerDescriptor
from switchboard.logger import get_logger

logger = get_logger(__name__)


class HandlerRegistry:
    """
    Registry of handlers available for routing.

    Features:
    - Validates descriptors at registration; ids are never reused
    - Registration order is preserved (used for tie-breaking)
    - Tolerant capability search (bidirectional substring match)

    Registration is expected to finish before traffic starts; after that the
    registry is only read, so concurrent lookups need no locking.
    """

    def __init__(self) -> None:
        self._handlers: dict[str, Handler] = {}
        self._descriptors: dict[str, HandlerDescriptor] = {}

    def register(
        self, descriptor: HandlerDescriptor | Mapping[str, Any], handler: Handler
    ) -> HandlerDescriptor:
        """
        Register a handler.

        Args:
            descriptor: HandlerDescriptor or a mapping with the same fields
            handler: Async function (query, context) -> Response

        Returns:
            The stored descriptor

        Raises:
            ValidationError: Malformed descriptor or non-callable handler
            DuplicateIdError: The id is already registered
        """
        if isinstance(descriptor, Mapping):
            descriptor = HandlerDescriptor.from_dict(descriptor)
        self._validate(descriptor, handler)
        descriptor = dataclasses.replace(descriptor, capabilities=tuple(descriptor.capabilities))

        if descriptor.id in self._descriptors:
            raise DuplicateIdError(descriptor.id)

        self._handlers[descriptor.id] = handler
        self._descriptors[descriptor.id] = descriptor
        logger.debug(
            "handler_registered",
            handler_id=descriptor.id,
            capabilities=list(descriptor.capabilities),
        )
        return descriptor

    @staticmethod
    def _validate(descriptor: Any, handler: Any) -> None:
        if not isinstance(descriptor, HandlerDescriptor):
            raise ValidationError(
                f"descriptor must be a HandlerDescriptor, got {type(descriptor).__name__}"
            )
        for field_name in ("id", "name", "description"):
            value = getattr(descriptor, field_name)
            if not isinstance(value, str) or not value.strip():
                raise ValidationError(f"descriptor.{field_name} must be a non-empty string")

        capabilities = descriptor.capabilities
        if isinstance(capabilities, str) or not isinstance(capabilities, (list, tuple)):
            raise ValidationError("descriptor.capabilities must be a list of strings")
        for tag in capabilities:
            if not isinstance(tag, str) or not tag.strip():
                raise ValidationError(
                    f"descriptor.capabilities contains an invalid tag: {tag!r}"
                )

        for field_name in ("team", "parent"):
            value = getattr(descriptor, field_name)
            if value is not None and not isinstance(value, str):
                raise ValidationError(f"descriptor.{field_name} must be a string")

        if not callable(handler):
            raise ValidationError(f"handler for '{descriptor.id}' is not callable")

    def lookup(self, handler_id: str) -> Handler | None:
        """Get the handler function by id."""
        return self._handlers.get(handler_id)

    def describe(self, handler_id: str) -> HandlerDescriptor | None:
        """Get the descriptor by id."""
        return self._descriptors.get(handler_id)

    def list_ids(self) -> list[str]:
        """All ids in registration order."""
        return list(self._descriptors)

    def descriptors(self) -> list[HandlerDescriptor]:
        return list(self._descriptors.values())

    def find_by_capability(self, tag: str) -> list[HandlerDescriptor]:
        """Descriptors with a capability containing, or contained in, `tag`."""
        needle = tag.strip().lower()
        if not needle:
            return []
        return [
            descriptor
            for descriptor in self._descriptors.values()
            if any(capability_matches(needle, cap) for cap in descriptor.capabilities)
        ]

    def __len__(self) -> int:
        return len(self._descriptors)

    def __contains__(self, handler_id: object) -> bool:
        return handler_id in self._descriptors

    def __iter__(self) -> Iterator[HandlerDescriptor]:
        return iter(self.descriptors())


def capability_matches(tag: str, capability: str) -> bool:
    """Bidirectional, case-insensitive substring match."""
    tag = tag.lower()
    capability = capability.lower()
    return tag in capability or capability in tag

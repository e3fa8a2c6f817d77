"""CloudEvents type catalogue and the (resource_type, action) dispatch table."""

from __future__ import annotations

from ficsync.core.exceptions import UnknownEventType
from ficsync.db.enums import ResourceType, SyncAction

EVENT_TYPE_PREFIX = "it.fattureincloud.webhooks."

_RESOURCE_SEGMENTS: dict[str, ResourceType] = {
    "entities.clients": ResourceType.CLIENT,
    "entities.suppliers": ResourceType.SUPPLIER,
    "issued_documents.invoices": ResourceType.INVOICE,
    "issued_documents.quotes": ResourceType.QUOTE,
}

_ACTIONS: dict[str, SyncAction] = {
    "create": SyncAction.CREATED,
    "update": SyncAction.UPDATED,
    "delete": SyncAction.DELETED,
}

# Built once: "entities.clients.create" -> (CLIENT, CREATED), ...
EVENT_DISPATCH: dict[str, tuple[ResourceType, SyncAction]] = {
    f"{segment}.{verb}": (resource_type, action)
    for segment, resource_type in _RESOURCE_SEGMENTS.items()
    for verb, action in _ACTIONS.items()
}

# Default subscription types per event group
EVENT_GROUP_TYPES: dict[str, list[str]] = {
    "entity": [
        f"{EVENT_TYPE_PREFIX}{key}"
        for key in EVENT_DISPATCH
        if key.startswith("entities.")
    ],
    "issued_documents": [
        f"{EVENT_TYPE_PREFIX}{key}"
        for key in EVENT_DISPATCH
        if key.startswith("issued_documents.")
    ],
}


def canonical_event_type(event_type: str) -> str:
    """Strip the vendor prefix: full CloudEvents types and short forms map alike."""
    value = (event_type or "").strip()
    if value.startswith(EVENT_TYPE_PREFIX):
        value = value[len(EVENT_TYPE_PREFIX) :]
    return value


def resolve_event_type(event_type: str) -> tuple[ResourceType, SyncAction]:
    """Map an event type to exactly one (resource_type, action); never guesses."""
    key = canonical_event_type(event_type)
    try:
        return EVENT_DISPATCH[key]
    except KeyError:
        raise UnknownEventType(event_type) from None

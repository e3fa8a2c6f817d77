"""CloudEvents envelope normalization (binary and structured content modes)."""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass, field
from typing import Any, Mapping

from ficsync.core.exceptions import UnknownEventType
from ficsync.services.event_types import resolve_event_type

STRUCTURED_CONTENT_TYPE = "application/cloudevents+json"


@dataclass
class EventEnvelope:
    event_type: str | None
    occurred_at: str | None
    subject: str | None
    ce_id: str | None
    source: str | None
    specversion: str | None
    resource_ids: list[int] = field(default_factory=list)
    ids_valid: bool = True
    structured: bool = False
    # canonical dispatch pair; None when the type is not one we sync
    resource_type: str | None = None
    action: str | None = None

    @property
    def is_known(self) -> bool:
        return self.resource_type is not None

    def to_payload(self) -> dict[str, Any]:
        """JSON-safe form stored in the job payload."""
        return asdict(self)

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "EventEnvelope":
        return cls(
            event_type=payload.get("event_type"),
            occurred_at=payload.get("occurred_at"),
            subject=payload.get("subject"),
            ce_id=payload.get("ce_id"),
            source=payload.get("source"),
            specversion=payload.get("specversion"),
            resource_ids=[int(i) for i in payload.get("resource_ids") or []],
            structured=bool(payload.get("structured")),
            resource_type=payload.get("resource_type"),
            action=payload.get("action"),
        )


def is_structured(content_type: str | None) -> bool:
    return STRUCTURED_CONTENT_TYPE in (content_type or "").lower()


def parse_body(body: bytes) -> dict[str, Any] | None:
    """
    Decode the JSON body.

    Returns {} for an empty body and None when it is not valid JSON (or not
    an object); the caller decides whether that is an error.
    """
    if not body or not body.strip():
        return {}
    try:
        data = json.loads(body)
    except (json.JSONDecodeError, UnicodeDecodeError):
        return None
    return data if isinstance(data, dict) else None


def _extract_ids(data: Any) -> tuple[list[int], bool]:
    """Returns (ids, all_valid); non-integer ids are reported, not raised."""
    if not isinstance(data, dict):
        return [], True
    ids = data.get("ids")
    if not isinstance(ids, list):
        return [], True
    resource_ids: list[int] = []
    valid = True
    for value in ids:
        if isinstance(value, bool):
            valid = False
            continue
        try:
            resource_ids.append(int(value))
        except (TypeError, ValueError):
            valid = False
    return resource_ids, valid


def _resolve(envelope: EventEnvelope) -> EventEnvelope:
    if isinstance(envelope.event_type, str) and envelope.event_type:
        try:
            resource_type, action = resolve_event_type(envelope.event_type)
        except UnknownEventType:
            return envelope
        envelope.resource_type = resource_type.value
        envelope.action = action.value
    return envelope


def build_envelope(
    headers: Mapping[str, str], body: dict[str, Any] | None
) -> EventEnvelope:
    """
    Normalize a notification into an EventEnvelope.

    Structured mode reads attributes from the body; binary mode from
    ``ce-*`` headers. Ids always come from ``data.ids`` in the body. The
    event type is resolved to its (resource_type, action) pair here; an
    unrecognized type leaves both None.
    """
    body = body or {}
    resource_ids, ids_valid = _extract_ids(body.get("data"))
    if is_structured(headers.get("content-type")):
        return _resolve(EventEnvelope(
            event_type=body.get("type"),
            occurred_at=body.get("time"),
            subject=body.get("subject"),
            ce_id=body.get("id"),
            source=body.get("source"),
            specversion=body.get("specversion"),
            resource_ids=resource_ids,
            ids_valid=ids_valid,
            structured=True,
        ))
    return _resolve(EventEnvelope(
        event_type=headers.get("ce-type"),
        occurred_at=headers.get("ce-time"),
        subject=headers.get("ce-subject"),
        ce_id=headers.get("ce-id"),
        source=headers.get("ce-source"),
        specversion=headers.get("ce-specversion"),
        resource_ids=resource_ids,
        ids_valid=ids_valid,
    ))

"""Structured logging helpers (PII-safe)."""

from typing import Any

REDACTED = "[REDACTED]"

# Fields stripped from FIC payloads before they reach a log line
SENSITIVE_FIELDS = frozenset(
    {
        "email",
        "phone",
        "tax_code",
        "vat_number",
        "bank_iban",
        "bank_name",
        "notes",
    }
)


def build_log_context(
    *,
    account_id: int | None = None,
    event_group: str | None = None,
    event_type: str | None = None,
    job_id: int | None = None,
    resource_type: str | None = None,
    fic_id: int | None = None,
    request_id: str | None = None,
    route: str | None = None,
    method: str | None = None,
) -> dict[str, Any]:
    """Return a PII-safe log context dict."""
    context: dict[str, Any] = {}
    if account_id is not None:
        context["account_id"] = account_id
    if event_group:
        context["event_group"] = event_group
    if event_type:
        context["event_type"] = event_type
    if job_id is not None:
        context["job_id"] = job_id
    if resource_type:
        context["resource_type"] = resource_type
    if fic_id is not None:
        context["fic_id"] = fic_id
    if request_id:
        context["request_id"] = request_id
    if route:
        context["route"] = route
    if method:
        context["method"] = method
    return context


def redact_payload(data: Any) -> Any:
    """Recursively replace sensitive values in a FIC payload."""
    if isinstance(data, dict):
        return {
            key: REDACTED if key in SENSITIVE_FIELDS and value is not None else redact_payload(value)
            for key, value in data.items()
        }
    if isinstance(data, list):
        return [redact_payload(item) for item in data]
    return data

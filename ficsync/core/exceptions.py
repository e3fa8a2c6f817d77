"""Domain errors for the webhook-to-sync pipeline.

Errors raised at the HTTP boundary carry ``status_code`` and a ``message``
that is returned verbatim as ``{"error": message}``. Errors raised inside
jobs are retried by the worker (or swallowed where noted).
"""


class FicSyncError(Exception):
    """Base exception for ficsync errors."""

    status_code: int = 500
    message: str = "Internal error"

    def __init__(self, message: str | None = None):
        if message is not None:
            self.message = message
        super().__init__(self.message)


# =============================================================================
# HTTP boundary
# =============================================================================


class RateLimited(FicSyncError):
    """Caller exceeded the per-IP request budget."""

    status_code = 429
    message = "Too many requests"


class SubscriptionNotFound(FicSyncError):
    """No active subscription for (account_id, event_group)."""

    status_code = 404
    message = "Subscription not found or inactive"


class MissingChallenge(FicSyncError):
    """Verification GET without a challenge header or query param."""

    status_code = 400
    message = "Missing verification challenge"


class InvalidPayload(FicSyncError):
    """Body is not valid JSON."""

    status_code = 400
    message = "Invalid JSON payload"


class MissingEventType(FicSyncError):
    status_code = 400
    message = "Missing required CloudEvents type attribute"


class EmptyResourceIds(FicSyncError):
    """Notification envelope carries no resource ids."""

    status_code = 400
    message = "Empty IDs array in payload"


class PayloadTooLarge(FicSyncError):
    status_code = 413
    message = "Payload too large"


class MethodNotAllowed(FicSyncError):
    status_code = 405
    message = "Method not allowed"


class EnqueueFailed(FicSyncError):
    status_code = 500
    message = "Failed to queue webhook"


class WebhookAuthError(FicSyncError):
    """Base class for webhook authentication failures (always 401)."""

    status_code = 401
    message = "Unauthorized"


class MissingSignature(WebhookAuthError):
    message = "Missing signature header"


class InvalidSignature(WebhookAuthError):
    message = "Invalid signature"


class MissingAuthHeader(WebhookAuthError):
    message = "Missing Authorization header"


class InvalidToken(WebhookAuthError):
    message = "Invalid token"


# =============================================================================
# Jobs and sync
# =============================================================================


class AccountNotFound(FicSyncError):
    """Job references an account that no longer exists."""

    status_code = 404
    message = "Account not found"


class AccountUnavailable(FicSyncError):
    """Account is revoked, suspended or disconnected; it cannot be synced."""

    status_code = 409

    def __init__(self, account_id: int, status: str):
        self.account_id = account_id
        self.status = status
        super().__init__(f"Account {account_id} is {status}; reconnect it to resume syncing")


class TokenUnavailable(FicSyncError):
    """No usable access token: the refresh failed or there is nothing to refresh with."""

    status_code = 503

    def __init__(self, account_id: int):
        self.account_id = account_id
        super().__init__(f"No usable FIC access token for account {account_id}")


class UnknownEventType(FicSyncError):
    """Event type has no entry in the dispatch table."""

    status_code = 400

    def __init__(self, event_type: str):
        self.event_type = event_type
        super().__init__(f"Unknown event type: {event_type}")


class ExternalFetchFailed(FicSyncError):
    """Fetching or persisting a single resource failed; sibling ids continue."""

    status_code = 502

    def __init__(self, resource_type: str, fic_id: int, reason: str):
        self.resource_type = resource_type
        self.fic_id = fic_id
        self.reason = reason
        super().__init__(f"Failed to sync {resource_type} {fic_id}: {reason}")


class BroadcastFailed(FicSyncError):
    """Real-time publish failed. Callers log and swallow it."""


class FicApiError(FicSyncError):
    """Non-2xx response or network error from the FIC API."""

    status_code = 502

    def __init__(self, message: str, http_status: int | None = None):
        self.http_status = http_status
        super().__init__(message)

    @property
    def is_auth_error(self) -> bool:
        return self.http_status in (401, 403)


# =============================================================================
# OAuth
# =============================================================================


class NoCompanyAvailable(FicSyncError):
    status_code = 409
    message = "No company available for this FIC account"


class CompanyMismatch(FicSyncError):
    """Authorized FIC user cannot see the company the tenant is bound to."""

    status_code = 409

    def __init__(self, expected_id: int, returned_ids: list[int]):
        self.expected_id = expected_id
        self.returned_ids = list(returned_ids)
        returned = ", ".join(str(i) for i in self.returned_ids) or "none"
        super().__init__(
            f"Company mismatch: this team is bound to company {expected_id}, "
            f"but the authorized FIC user can only access companies [{returned}]. "
            "Log in with a FIC user that has access to the bound company."
        )


class CompanyAlreadyBound(FicSyncError):
    """At most one account per company: another tenant owns this one."""

    status_code = 409

    def __init__(self, company_id: int):
        self.company_id = company_id
        super().__init__(f"Company {company_id} is already connected to another team")


class OAuthStateError(FicSyncError):
    status_code = 400
    message = "Invalid OAuth state"

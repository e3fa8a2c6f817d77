"""Service layer modules."""

# Import service modules (not individual functions) for cleaner access.
# Order matters: later modules import earlier ones through this package.
from ficsync.services import (  # noqa: F401
    account_service,
    company_selector,
    event_service,
    event_types,
    fic_api,
    job_service,
    oauth_service,
    subscription_service,
    sync_service,
)

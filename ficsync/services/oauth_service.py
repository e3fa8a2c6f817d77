"""FIC OAuth integration.

Authorization URL + signed state, code exchange, token refresh and the
account binding that runs after a successful callback.
"""

import logging
import secrets
from datetime import timedelta
from typing import Any
from urllib.parse import urlencode

import httpx
import jwt
from sqlalchemy.orm import Session

from ficsync.core.config import settings
from ficsync.core.exceptions import (
    CompanyAlreadyBound,
    FicApiError,
    OAuthStateError,
    TokenUnavailable,
)
from ficsync.db.enums import AccountStatus
from ficsync.db.models import Account
from ficsync.services import account_service
from ficsync.services.company_selector import normalize_companies, select_company
from ficsync.services.fic_api import list_user_companies
from ficsync.utils.datetime_parsing import now_utc

logger = logging.getLogger(__name__)

STATE_COOKIE_NAME = "fic_oauth_state"
STATE_TTL = timedelta(minutes=10)
STATE_ALGORITHM = "HS256"


def _authorize_url() -> str:
    return f"{settings.FIC_API_BASE_URL.rstrip('/')}/oauth/authorize"


def _token_url() -> str:
    return f"{settings.FIC_API_BASE_URL.rstrip('/')}/oauth/token"


# ============================================================================
# State
# ============================================================================


def create_state_token(tenant_id: str | None) -> tuple[str, str]:
    """
    Returns (state, signed cookie value).

    The random state goes to FIC; the cookie binds it to the tenant.
    """
    state = secrets.token_urlsafe(32)
    now = now_utc()
    cookie = jwt.encode(
        {
            "state": state,
            "tenant_id": tenant_id,
            "iat": int(now.timestamp()),
            "exp": int((now + STATE_TTL).timestamp()),
        },
        settings.JWT_SECRET,
        algorithm=STATE_ALGORITHM,
    )
    return state, cookie


def verify_state(state: str | None, cookie: str | None) -> str | None:
    """Check the returned state against the cookie; returns the tenant id."""
    if not state or not cookie:
        raise OAuthStateError()
    try:
        payload = jwt.decode(cookie, settings.JWT_SECRET, algorithms=[STATE_ALGORITHM])
    except jwt.PyJWTError:
        raise OAuthStateError()
    if not secrets.compare_digest(str(payload.get("state", "")), state):
        raise OAuthStateError()
    return payload.get("tenant_id")


def get_auth_url(state: str) -> str:
    """Generate the FIC OAuth authorization URL."""
    params = {
        "response_type": "code",
        "client_id": settings.FIC_CLIENT_ID,
        "redirect_uri": settings.FIC_REDIRECT_URI,
        "scope": " ".join(settings.oauth_scopes_list),
        "state": state,
    }
    return f"{_authorize_url()}?{urlencode(params)}"


# ============================================================================
# Token endpoint
# ============================================================================


async def _post_token(data: dict[str, str]) -> dict[str, Any]:
    payload = {
        "client_id": settings.FIC_CLIENT_ID,
        "client_secret": settings.FIC_CLIENT_SECRET,
        **data,
    }
    try:
        async with httpx.AsyncClient(timeout=httpx.Timeout(settings.FIC_API_TIMEOUT_SECONDS)) as client:
            response = await client.post(_token_url(), json=payload)
    except httpx.HTTPError as exc:
        raise FicApiError(f"FIC token request failed: {type(exc).__name__}") from exc
    if not response.is_success:
        raise FicApiError(
            f"FIC token endpoint returned HTTP {response.status_code}",
            http_status=response.status_code,
        )
    return response.json()


async def exchange_code(code: str) -> dict[str, Any]:
    """Exchange an authorization code for tokens."""
    return await _post_token(
        {
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": settings.FIC_REDIRECT_URI,
        }
    )


async def refresh_tokens(refresh_token: str) -> dict[str, Any]:
    return await _post_token({"grant_type": "refresh_token", "refresh_token": refresh_token})


async def refresh_account_token(db: Session, account: Account) -> bool:
    """
    Refresh an account's access token. Returns True on success.

    An auth failure (revoked/invalid refresh token) moves the account to
    needs_refresh; transient errors leave the status untouched.
    """
    if not account.refresh_token:
        return False
    try:
        tokens = await refresh_tokens(account.refresh_token)
    except FicApiError as exc:
        logger.error("FIC token refresh failed for account %s: %s", account.id, exc)
        if exc.http_status in (400, 401, 403) and account.status == AccountStatus.ACTIVE.value:
            account_service.transition_status(
                db, account, AccountStatus.NEEDS_REFRESH, "Token refresh rejected by FIC"
            )
        return False

    account_service.store_tokens(
        db,
        account,
        access_token=tokens["access_token"],
        refresh_token=tokens.get("refresh_token"),
        expires_in=tokens.get("expires_in"),
    )
    return True


async def ensure_fresh_token(db: Session, account: Account) -> None:
    """
    Refresh ahead of API calls when the access token is (nearly) expired.

    Raises TokenUnavailable when no valid token can be had, so callers
    retry later instead of calling FIC with a dead token.
    """
    if account_service.needs_token_refresh(account):
        await refresh_account_token(db, account)
    if not account_service.is_token_valid(account):
        raise TokenUnavailable(account.id)


# ============================================================================
# Callback
# ============================================================================


async def complete_authorization(db: Session, code: str, tenant_id: str | None) -> Account:
    """
    Exchange the code, pick the company for the tenant and bind the account.

    Raises NoCompanyAvailable / CompanyMismatch from the selector.
    """
    tokens = await exchange_code(code)
    access_token = tokens["access_token"]

    companies = normalize_companies(await list_user_companies(access_token))
    existing = account_service.get_account_for_tenant(db, tenant_id)
    company = select_company(companies, existing)

    owner = account_service.get_account_by_company(db, company.id)
    if owner is not None and owner.tenant_id and tenant_id and owner.tenant_id != tenant_id:
        raise CompanyAlreadyBound(company.id)

    account = account_service.bind_account(
        db,
        tenant_id=tenant_id,
        company_id=company.id,
        company_name=company.name,
        access_token=access_token,
        refresh_token=tokens.get("refresh_token"),
        expires_in=tokens.get("expires_in"),
    )
    logger.info(
        "FIC OAuth: account %s bound to company %s", account.id, account.company_id
    )
    return account

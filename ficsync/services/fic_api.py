"""Thin async client for the Fatture in Cloud v2 REST API.

Only the calls the sync pipeline needs: single-resource fetches, paged
listings for a full sync, subscription create/renew/delete, and the
user's company list.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Any

import httpx

from ficsync.core.config import settings
from ficsync.core.exceptions import FicApiError
from ficsync.db.enums import ResourceType
from ficsync.utils.datetime_parsing import parse_fic_date, parse_fic_datetime

logger = logging.getLogger(__name__)

RESOURCE_PATHS: dict[ResourceType, str] = {
    ResourceType.CLIENT: "entities/clients",
    ResourceType.SUPPLIER: "entities/suppliers",
    ResourceType.INVOICE: "issued_documents",
    ResourceType.QUOTE: "issued_documents",
}

# issued_documents listings are filtered by document type
DOCUMENT_TYPES: dict[ResourceType, str] = {
    ResourceType.INVOICE: "invoice",
    ResourceType.QUOTE: "quote",
}

DEFAULT_PAGE_SIZE = 50


def _to_decimal(value: Any) -> Decimal | None:
    if value is None or value == "":
        return None
    try:
        return Decimal(str(value))
    except InvalidOperation:
        return None


def normalize_entity(data: dict[str, Any], fallback_id: int) -> dict[str, Any]:
    """Client/supplier payload -> local column values."""
    return {
        "id": int(data.get("id") or fallback_id),
        "name": data.get("name"),
        "code": data.get("code"),
        "vat_number": data.get("vat_number"),
        "fic_created_at": parse_fic_datetime(data.get("created_at")),
        "fic_updated_at": parse_fic_datetime(data.get("updated_at")),
        "raw": data,
    }


def normalize_document(data: dict[str, Any], fallback_id: int) -> dict[str, Any]:
    """Invoice/quote payload -> local column values."""
    total = data.get("amount_net")
    if total is None:
        total = data.get("total")
    if total is None:
        total = data.get("total_gross")
    return {
        "id": int(data.get("id") or fallback_id),
        "number": None if data.get("number") is None else str(data.get("number")),
        "status": data.get("status"),
        "total_gross": _to_decimal(total),
        "fic_date": parse_fic_date(data.get("date")),
        "fic_created_at": parse_fic_datetime(data.get("created_at")),
        "raw": data,
    }


def normalize_resource(resource_type: ResourceType, data: dict[str, Any], fallback_id: int) -> dict[str, Any]:
    if resource_type in (ResourceType.CLIENT, ResourceType.SUPPLIER):
        return normalize_entity(data, fallback_id)
    return normalize_document(data, fallback_id)


@dataclass
class ResourcePage:
    """One page of a listing, items already normalized."""

    items: list[dict[str, Any]] = field(default_factory=list)
    page: int = 1
    last_page: int = 1
    total: int = 0


class FicApiClient:
    """Company-scoped API client authenticated with a bearer token."""

    def __init__(
        self,
        company_id: int,
        access_token: str,
        *,
        base_url: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.company_id = company_id
        self.access_token = access_token
        self.base_url = (base_url or settings.FIC_API_BASE_URL).rstrip("/")
        self.timeout = httpx.Timeout(timeout or settings.FIC_API_TIMEOUT_SECONDS)
        self._transport = transport

    @classmethod
    def for_account(cls, account, **kwargs) -> "FicApiClient":
        return cls(account.company_id, account.access_token or "", **kwargs)

    def _company_url(self, path: str) -> str:
        return f"{self.base_url}/c/{self.company_id}/{path.lstrip('/')}"

    async def _request(self, method: str, url: str, **kwargs) -> dict[str, Any]:
        headers = {
            "Authorization": f"Bearer {self.access_token}",
            "Accept": "application/json",
        }
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.request(method, url, headers=headers, **kwargs)
        except httpx.HTTPError as exc:
            raise FicApiError(f"FIC API request failed: {type(exc).__name__}") from exc

        if response.status_code == 429:
            retry_after = response.headers.get("Retry-After", "60")
            raise FicApiError(
                f"FIC API rate limit exceeded, retry after {retry_after}s", http_status=429
            )
        if not response.is_success:
            detail = ""
            try:
                body = response.json()
                error = body.get("error") if isinstance(body, dict) else None
                detail = error.get("message", "") if isinstance(error, dict) else str(error or "")
            except ValueError:
                detail = response.text[:200]
            raise FicApiError(
                f"FIC API returned HTTP {response.status_code}: {detail}".rstrip(": "),
                http_status=response.status_code,
            )
        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError as exc:
            raise FicApiError("FIC API returned invalid JSON", response.status_code) from exc

    # -------------------------------------------------------------------------
    # Resources
    # -------------------------------------------------------------------------

    async def fetch_resource(self, resource_type: ResourceType, fic_id: int) -> dict[str, Any]:
        """Fetch one resource and return normalized column values plus ``raw``."""
        resource_type = ResourceType(resource_type)
        url = self._company_url(f"{RESOURCE_PATHS[resource_type]}/{fic_id}")
        params = {"fieldset": "detailed"}
        body = await self._request("GET", url, params=params)
        data = body.get("data", body) if isinstance(body, dict) else {}
        if not isinstance(data, dict):
            raise FicApiError(f"Unexpected FIC payload for {resource_type.value} {fic_id}")
        return normalize_resource(resource_type, data, fic_id)

    async def list_resources(
        self, resource_type: ResourceType, page: int = 1, per_page: int = DEFAULT_PAGE_SIZE
    ) -> ResourcePage:
        """
        Fetch one page of a listing.

        Items without an id are dropped; they cannot be keyed locally.
        """
        resource_type = ResourceType(resource_type)
        params: dict[str, Any] = {"page": page, "per_page": per_page, "fieldset": "detailed"}
        if resource_type in DOCUMENT_TYPES:
            params["type"] = DOCUMENT_TYPES[resource_type]
        body = await self._request("GET", self._company_url(RESOURCE_PATHS[resource_type]), params=params)
        if not isinstance(body, dict) or not isinstance(body.get("data"), list):
            raise FicApiError(f"Unexpected FIC listing payload for {resource_type.value}")

        items = []
        for data in body["data"]:
            if not isinstance(data, dict) or not data.get("id"):
                logger.warning("Skipping %s without id in FIC listing", resource_type.value)
                continue
            items.append(normalize_resource(resource_type, data, int(data["id"])))
        return ResourcePage(
            items=items,
            page=int(body.get("current_page") or page),
            last_page=int(body.get("last_page") or 1),
            total=int(body.get("total") or len(items)),
        )

    # -------------------------------------------------------------------------
    # Subscriptions
    # -------------------------------------------------------------------------

    async def create_or_renew_subscription(
        self,
        sink: str,
        types: list[str],
        existing_subscription_id: str | None = None,
    ) -> dict[str, Any]:
        """
        POST a new subscription, or PUT over an existing one.

        Returns ``{"id", "secret", "expires_at"}``.
        """
        payload = {
            "data": {
                "sink": sink,
                "types": list(types),
                "verification_method": "header",
                "config": {"mapping": "binary"},
            }
        }
        if existing_subscription_id:
            url = self._company_url(f"subscriptions/{existing_subscription_id}")
            body = await self._request("PUT", url, json=payload)
        else:
            body = await self._request("POST", self._company_url("subscriptions"), json=payload)

        data = body.get("data", body) if isinstance(body, dict) else {}
        subscription_id = data.get("id") or existing_subscription_id
        if not subscription_id:
            raise FicApiError("FIC API response did not include a subscription id")
        return {
            "id": str(subscription_id),
            "secret": data.get("secret") or data.get("verification_token"),
            "expires_at": parse_fic_datetime(data.get("expires_at")),
        }

    async def delete_subscription(self, subscription_id: str) -> None:
        await self._request("DELETE", self._company_url(f"subscriptions/{subscription_id}"))


async def list_user_companies(
    access_token: str,
    *,
    base_url: str | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> list[dict[str, Any]]:
    """Companies visible to the authorized FIC user (``GET /user/companies``)."""
    base = (base_url or settings.FIC_API_BASE_URL).rstrip("/")
    try:
        async with httpx.AsyncClient(
            timeout=httpx.Timeout(settings.FIC_API_TIMEOUT_SECONDS), transport=transport
        ) as client:
            response = await client.get(
                f"{base}/user/companies",
                headers={"Authorization": f"Bearer {access_token}", "Accept": "application/json"},
            )
    except httpx.HTTPError as exc:
        raise FicApiError(f"FIC API request failed: {type(exc).__name__}") from exc
    if not response.is_success:
        raise FicApiError(
            f"FIC API returned HTTP {response.status_code} listing companies",
            http_status=response.status_code,
        )
    data = response.json().get("data") or {}
    return list(data.get("companies") or [])

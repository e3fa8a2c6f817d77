"""Pick the FIC company to bind after an OAuth authorization."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Iterable

from ficsync.core.exceptions import CompanyMismatch, NoCompanyAvailable

if TYPE_CHECKING:
    from ficsync.db.models import Account

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Company:
    id: int
    name: str | None = None


def normalize_companies(raw: Iterable[dict[str, Any]] | None) -> list[Company]:
    """Turn the /user/companies payload into Company entries, dropping rows without an id."""
    companies: list[Company] = []
    for item in raw or []:
        company_id = item.get("id")
        if company_id is None:
            continue
        companies.append(Company(id=int(company_id), name=item.get("name")))
    return companies


def select_company(companies: list[Company], existing_account: "Account | None" = None) -> Company:
    """
    Deterministically choose the company for a tenant.

    - no companies: NoCompanyAvailable
    - tenant already bound: the bound company must be in the list, otherwise
      CompanyMismatch (never silently rebind a tenant)
    - fresh connection: the first company
    """
    if not companies:
        raise NoCompanyAvailable()

    if existing_account is not None:
        expected_id = int(existing_account.company_id)
        for company in companies:
            if company.id == expected_id:
                return company
        returned_ids = [c.id for c in companies]
        logger.warning(
            "FIC OAuth: authorized user does not include the bound company",
            extra={"expected_company_id": expected_id, "returned_company_ids": returned_ids},
        )
        raise CompanyMismatch(expected_id, returned_ids)

    return companies[0]

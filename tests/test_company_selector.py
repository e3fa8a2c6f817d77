import pytest

from ficsync.core.exceptions import CompanyMismatch, NoCompanyAvailable
from ficsync.db.models import Account
from ficsync.services.company_selector import Company, normalize_companies, select_company

COMPANIES = [Company(1550348, "Acme"), Company(1543167, "Beta")]


def test_empty_list_raises():
    with pytest.raises(NoCompanyAvailable):
        select_company([])


def test_fresh_connection_takes_first_company():
    assert select_company(COMPANIES).id == 1550348


def test_bound_tenant_keeps_its_company():
    existing = Account(company_id=1543167)

    assert select_company(COMPANIES, existing).id == 1543167


def test_bound_company_missing_is_a_mismatch():
    existing = Account(company_id=1550348)

    with pytest.raises(CompanyMismatch) as exc:
        select_company([Company(1543167)], existing)

    assert exc.value.expected_id == 1550348
    assert exc.value.returned_ids == [1543167]
    assert "1550348" in exc.value.message
    assert "1543167" in exc.value.message
    assert exc.value.status_code == 409


def test_normalize_companies_drops_rows_without_id():
    raw = [{"id": "1550348", "name": "Acme"}, {"name": "no id"}, {"id": 1543167}]

    assert normalize_companies(raw) == [Company(1550348, "Acme"), Company(1543167, None)]
    assert normalize_companies(None) == []

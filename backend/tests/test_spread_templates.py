from datetime import date, datetime

import pytest

from engine.spreads import SPREAD_TEMPLATES, get_template, render_spread
from engine.spreads.rent_roll import COLUMN_KEYS, walt_years
from errors import TemplateMissingError
from models.facts import SENTINEL_UUID, Fact, RentRollRowIn

NOW = datetime(2026, 3, 15, 12, 0, 0)
_seq = iter(range(1, 10_000))


def fact(fact_type, key, value, start=None, end=None, owner_type="DEAL", owner=SENTINEL_UUID, created=NOW) -> Fact:
    return Fact(
        id=f"f{next(_seq):05d}",
        deal_id="deal-1",
        bank_id="bank-1",
        fact_type=fact_type,
        fact_key=key,
        fact_value_num=value,
        fact_period_start=start,
        fact_period_end=end,
        owner_type=owner_type,
        owner_entity_id=owner,
        created_at=created,
    )


def month(fact_type, key, value, year, m):
    start = date(year, m, 1)
    end = date(year + (m == 12), m % 12 + 1, 1)
    return fact(fact_type, key, value, start, date.fromordinal(end.toordinal() - 1))


def unit(uid, status="OCCUPIED", tenant=None, sqft=None, rent=None, lease_end=None, as_of=date(2026, 3, 1), rid=None):
    return RentRollRowIn(
        id=rid or f"r-{uid}-{tenant}",
        unit_id=uid,
        tenant_name=tenant,
        occupancy_status=status,
        sqft=sqft,
        monthly_rent=rent,
        lease_end=lease_end,
        as_of_date=as_of,
    )


# --- registry ---

def test_missing_template_is_an_error_spread_not_an_exception() -> None:
    out = render_spread("CASH_BUDGET", [], now=NOW)
    assert out.status == "error"
    assert out.error_code == "TEMPLATE_MISSING"
    assert "CASH_BUDGET" in out.error
    with pytest.raises(TemplateMissingError):
        get_template("CASH_BUDGET")


def test_registry_types() -> None:
    assert set(SPREAD_TEMPLATES) == {
        "T12", "RENT_ROLL", "BALANCE_SHEET", "PERSONAL_INCOME", "PERSONAL_FINANCIAL_STATEMENT", "GLOBAL_CASH_FLOW",
    }


# --- rent roll ---

def test_rent_roll_totals_and_occupancy() -> None:
    rows = [
        unit("101", tenant="Acme", sqft=1000, rent=2000, lease_end=date(2028, 3, 1)),
        unit("102", tenant="Beta", sqft=3000, rent=6000, lease_end=date(2027, 3, 1)),
        unit("103", status="VACANT", sqft=1000),
    ]
    out = render_spread("RENT_ROLL", [], rows, now=NOW)
    assert out.status == "ready"
    assert out.columns == COLUMN_KEYS
    t = out.totals
    assert t["TOTAL_OCCUPIED_RENT_MO"] == 8000
    assert t["TOTAL_OCCUPIED_SQFT"] == 4000
    assert t["TOTAL_SQFT"] == 5000
    assert t["OCCUPANCY_PCT"] == pytest.approx(0.8)
    assert t["VACANCY_PCT"] == pytest.approx(0.2)
    as_of = date(2026, 3, 1)
    w1 = (date(2028, 3, 1) - as_of).days / 365.25
    w2 = (date(2027, 3, 1) - as_of).days / 365.25
    assert t["WALT_YEARS"] == pytest.approx((w1 * 24000 + w2 * 72000) / 96000)
    assert [r.key for r in out.rows][-3:] == ["TOTAL_OCCUPIED", "TOTAL_VACANT", "TOTALS"]
    assert out.cell_value("TOTALS", "RENT_YR") == 96000


def test_rent_roll_without_sqft_has_null_occupancy() -> None:
    out = render_spread("RENT_ROLL", [], [unit("101", tenant="Acme", rent=1000)], now=NOW)
    assert out.totals["TOTAL_SQFT"] is None
    assert out.totals["OCCUPANCY_PCT"] is None
    assert out.totals["VACANCY_PCT"] is None

    # an occupied unit of unknown size next to a measured vacant one
    mixed = render_spread("RENT_ROLL", [], [unit("A", tenant="Acme", rent=1000), unit("B", status="VACANT", sqft=100)], now=NOW)
    assert mixed.totals["TOTAL_SQFT"] == 100
    assert mixed.totals["OCCUPANCY_PCT"] is None
    assert mixed.totals["VACANCY_PCT"] is None


def test_fully_vacant_measured_roll_is_zero_occupancy() -> None:
    out = render_spread("RENT_ROLL", [], [unit("1", status="VACANT", sqft=500), unit("2", status="VACANT", sqft=500)], now=NOW)
    assert out.totals["OCCUPANCY_PCT"] == 0.0
    assert out.totals["VACANCY_PCT"] == 1.0


def test_rent_roll_empty_renders_no_data_row() -> None:
    out = render_spread("RENT_ROLL", [], [], now=NOW)
    assert out.status == "ready"
    assert [r.key for r in out.rows] == ["no_data"]
    assert all(v is None for v in out.totals.values())


def test_walt_vacant_is_null_and_expired_lease_is_zero() -> None:
    as_of = date(2026, 3, 1)
    assert walt_years(unit("1", status="VACANT", lease_end=date(2030, 1, 1)), as_of) is None
    assert walt_years(unit("1", lease_end=None), as_of) is None
    assert walt_years(unit("1", lease_end=date(2025, 1, 1)), as_of) == 0.0


def test_rent_roll_sort_order_and_latest_as_of() -> None:
    rows = [
        unit("B", tenant="zeta", rid="r3"),
        unit("A", tenant=None, status="VACANT", rid="r2"),
        unit("A", tenant="Omega", rid="r1"),
        unit("A", tenant="alpha", rid="r4"),
        unit("C", tenant="old", as_of=date(2025, 12, 1), rid="r5"),
    ]
    out = render_spread("RENT_ROLL", [], rows, now=NOW)
    unit_rows = [r.key for r in out.rows if r.key.startswith("unit:")]
    assert unit_rows == ["unit:r4", "unit:r1", "unit:r2", "unit:r3"]
    assert out.as_of_date == date(2026, 3, 1)


# --- T12 ---

def test_t12_months_aggregate_into_ttm_and_formulas() -> None:
    facts = []
    for m in range(1, 13):
        facts.append(month("INCOME_STATEMENT", "GROSS_RENTAL_INCOME", 10000, 2025, m))
        facts.append(month("INCOME_STATEMENT", "UTILITIES", 1000, 2025, m))
    facts.append(month("INCOME_STATEMENT", "REAL_ESTATE_TAXES", 6000, 2025, 12))

    out = render_spread("T12", facts, now=NOW)
    assert out.columns[:12][0] == "2025-01"
    assert out.columns[11] == "2025-12"
    assert out.columns[12:] == ["YTD", "PY_YTD", "TTM"]
    assert out.cell_value("GROSS_RENTAL_INCOME", "TTM") == 120000
    assert out.cell_value("TOTAL_OPEX", "TTM") == 18000
    assert out.cell_value("NOI", "TTM") == 102000
    assert out.cell_value("NOI", "2025-12") == 10000 - 7000
    assert out.cell_value("OPEX_RATIO", "TTM") == pytest.approx(0.15)
    assert out.totals["NOI_TTM"] == 102000

    noi = out.row("NOI").values[0]
    assert noi.provenance_by_col["TTM"].source == "Formula"
    fact_ids = {ref.fact_id for ref in noi.provenance_by_col["TTM"].inputs}
    assert len(fact_ids) == 25


def test_t12_latest_fact_wins_per_month() -> None:
    older = month("INCOME_STATEMENT", "GROSS_RENTAL_INCOME", 9000, 2025, 12)
    newer = month("INCOME_STATEMENT", "GROSS_RENTAL_INCOME", 9500, 2025, 12)
    newer.created_at = datetime(2026, 3, 16)
    out = render_spread("T12", [older, newer], now=NOW)
    assert out.cell_value("GROSS_RENTAL_INCOME", "2025-12") == 9500


def test_t12_tax_return_fallback_fills_only_empty_ttm() -> None:
    facts = [
        fact("TAX_RETURN", "GROSS_RECEIPTS", 500000, date(2025, 1, 1), date(2025, 12, 31)),
        fact("TAX_RETURN", "TOTAL_DEDUCTIONS", 200000, date(2025, 1, 1), date(2025, 12, 31)),
    ]
    out = render_spread("T12", facts, now=NOW)
    assert out.cell_value("GROSS_RENTAL_INCOME", "TTM") == 500000
    assert out.cell_value("TOTAL_OPEX", "TTM") == 200000
    assert out.cell_value("NOI", "TTM") == 300000
    assert out.row("GROSS_RENTAL_INCOME").values[0].provenance_by_col["TTM"].source == "TaxReturn"


def test_t12_reported_total_not_overwritten_by_formula() -> None:
    facts = [
        fact("INCOME_STATEMENT", "GROSS_RENTAL_INCOME", 100000, date(2025, 1, 1), date(2025, 12, 31)),
        fact("INCOME_STATEMENT", "TOTAL_INCOME", 95000, date(2025, 1, 1), date(2025, 12, 31)),
    ]
    out = render_spread("T12", facts, now=NOW)
    assert out.cell_value("TOTAL_INCOME", "TTM") == 95000


# --- balance sheet ---

def test_balance_sheet_columns_newest_first_and_net_worth() -> None:
    d1, d2 = date(2024, 12, 31), date(2025, 12, 31)
    facts = [
        fact("BALANCE_SHEET", "BS_CASH", 50000, end=d2),
        fact("BALANCE_SHEET", "BS_PPE_GROSS", 400000, end=d2),
        fact("BALANCE_SHEET", "BS_ACCUMULATED_DEPRECIATION", 100000, end=d2),
        fact("BALANCE_SHEET", "BS_ACCOUNTS_PAYABLE", 25000, end=d2),
        fact("BALANCE_SHEET", "BS_LONG_TERM_DEBT", 200000, end=d2),
        fact("BALANCE_SHEET", "BS_CASH", 40000, end=d1),
    ]
    out = render_spread("BALANCE_SHEET", facts, now=NOW)
    assert out.columns == ["2025-12-31", "2024-12-31"]
    assert out.cell_value("BS_NET_FIXED_ASSETS", "2025-12-31") == 300000
    assert out.totals["TOTAL_ASSETS"] == 350000
    assert out.totals["TOTAL_LIABILITIES"] == 225000
    assert out.totals["NET_WORTH"] == 125000
    assert out.cell_value("BS_CURRENT_RATIO", "2025-12-31") == pytest.approx(2.0)
    assert out.cell_value("BS_TOTAL_ASSETS", "2024-12-31") == 40000


# --- personal ---

def test_personal_income_filters_to_owner() -> None:
    g1, g2 = "guarantor-1", "guarantor-2"
    end = date(2024, 12, 31)
    facts = [
        fact("PERSONAL_INCOME", "WAGES_W2", 150000, end=end, owner_type="PERSONAL", owner=g1),
        fact("PERSONAL_INCOME", "SCHED_E_NET", 20000, end=end, owner_type="PERSONAL", owner=g1),
        fact("PERSONAL_INCOME", "WAGES_W2", 999999, end=end, owner_type="PERSONAL", owner=g2),
    ]
    out = render_spread("PERSONAL_INCOME", facts, owner_entity_id=g1, now=NOW)
    assert out.columns == ["2024"]
    assert out.totals["TOTAL_PERSONAL_INCOME"] == 170000


def test_pfs_totals_and_net_worth() -> None:
    g = "guarantor-1"
    facts = [
        fact("PFS", "PFS_CASH", 100000, owner_type="PERSONAL", owner=g),
        fact("PFS", "PFS_REAL_ESTATE", 900000, owner_type="PERSONAL", owner=g),
        fact("PFS", "PFS_MORTGAGES", 400000, owner_type="PERSONAL", owner=g),
        fact("PFS", "PFS_ANNUAL_DEBT_SERVICE", 36000, owner_type="PERSONAL", owner=g),
    ]
    out = render_spread("PERSONAL_FINANCIAL_STATEMENT", facts, owner_entity_id=g, now=NOW)
    assert out.totals["PFS_TOTAL_ASSETS"] == 1000000
    assert out.totals["PFS_TOTAL_LIABILITIES"] == 400000
    assert out.totals["PFS_NET_WORTH"] == 600000
    assert out.totals["PFS_ANNUAL_DEBT_SERVICE"] == 36000


# --- global cash flow ---

def test_global_cash_flow_combines_business_and_guarantors() -> None:
    end = date(2024, 12, 31)
    facts = [
        fact("TAX_RETURN", "NET_INCOME", 200000, end=end),
        fact("TAX_RETURN", "DEPRECIATION", 30000, end=end),
        fact("TAX_RETURN", "INTEREST_EXPENSE", 20000, end=end),
        fact("PERSONAL_INCOME", "WAGES_W2", 100000, end=end, owner_type="PERSONAL", owner="g1"),
        fact("PERSONAL_INCOME", "WAGES_W2", 50000, end=end, owner_type="PERSONAL", owner="g2"),
        fact("PFS", "PFS_LIVING_EXPENSES", 60000, owner_type="PERSONAL", owner="g1"),
        fact("PFS", "PFS_ANNUAL_DEBT_SERVICE", 40000, owner_type="PERSONAL", owner="g2"),
        fact("FINANCIAL_ANALYSIS", "ANNUAL_DEBT_SERVICE", 150000),
    ]
    out = render_spread("GLOBAL_CASH_FLOW", facts, now=NOW)
    assert out.columns == ["2024"]
    assert out.cell_value("BUSINESS_CASH_FLOW", "2024") == 250000
    assert out.cell_value("PERSONAL_INCOME", "2024") == 150000
    assert out.totals["GLOBAL_CASH_FLOW"] == 250000 + 150000 - 60000 - 40000
    assert out.totals["GCF_DSCR"] == pytest.approx(300000 / 150000)
    assert get_template("GLOBAL_CASH_FLOW").backfill(out) == {
        "GCF_GLOBAL_CASH_FLOW": 300000,
        "CASH_FLOW_AVAILABLE": 250000,
    }


def test_gcf_without_debt_service_has_null_dscr() -> None:
    facts = [fact("TAX_RETURN", "NET_INCOME", 100000, end=date(2024, 12, 31))]
    out = render_spread("GLOBAL_CASH_FLOW", facts, now=NOW)
    assert out.totals["GLOBAL_CASH_FLOW"] == 100000
    assert out.totals["GCF_DSCR"] is None

"""
Rent roll: one row per unit at the latest as-of date, then occupied/vacant/all totals.

Column keys and their order are a fixed contract with the UI and exports.
"""

from __future__ import annotations

from datetime import date
from typing import Any, Dict, List, Optional, Tuple

from engine.facts import format_money, format_number, is_number, safe_divide, safe_sum
from engine.spreads.base import RenderContext, SpreadTemplate
from models.facts import RentRollRowIn
from models.spreads import CellProvenance, RenderedSpread, SpreadCell, SpreadColumn, SpreadRow

COLUMNS: List[Tuple[str, str]] = [
    ("UNIT", "Unit"),
    ("TENANT", "Tenant"),
    ("STATUS", "Status"),
    ("SQFT", "Sqft"),
    ("RENT_MO", "Rent / Mo"),
    ("RENT_YR", "Rent / Yr"),
    ("MARKET_RENT_MO", "Market Rent / Mo"),
    ("LEASE_START", "Lease Start"),
    ("LEASE_END", "Lease End"),
    ("WALT_YEARS", "WALT (yrs)"),
    ("NOTES", "Notes"),
]
COLUMN_KEYS = [k for k, _ in COLUMNS]

DAYS_PER_YEAR = 365.25


def is_occupied(row: RentRollRowIn) -> bool:
    return (row.occupancy_status or "").strip().upper() == "OCCUPIED"


def monthly_rent(row: RentRollRowIn) -> Optional[float]:
    if is_number(row.monthly_rent):
        return float(row.monthly_rent)
    if is_number(row.annual_rent):
        return float(row.annual_rent) / 12.0
    return None


def annual_rent(row: RentRollRowIn) -> Optional[float]:
    if is_number(row.annual_rent):
        return float(row.annual_rent)
    if is_number(row.monthly_rent):
        return float(row.monthly_rent) * 12.0
    return None


def walt_years(row: RentRollRowIn, as_of: Optional[date]) -> Optional[float]:
    """
    Remaining lease term in years. Vacant units have no lease term (None); an
    occupied unit whose lease already ended has zero term left.
    """
    if not is_occupied(row):
        return None
    if row.lease_end is None or as_of is None:
        return None
    return max(0.0, (row.lease_end - as_of).days / DAYS_PER_YEAR)


def _sort_key(row: RentRollRowIn) -> Tuple[str, int, str, str]:
    tenant = (row.tenant_name or "").strip()
    return (row.unit_id or "", 0 if tenant else 1, tenant.lower(), row.id)


def _latest_rows(rows: List[RentRollRowIn]) -> Tuple[Optional[date], List[RentRollRowIn]]:
    dated = [r.as_of_date for r in rows if r.as_of_date is not None]
    if not dated:
        return None, list(rows)
    latest = max(dated)
    return latest, [r for r in rows if r.as_of_date == latest]


def _iso(d: Optional[date]) -> Optional[str]:
    return d.isoformat() if d else None


class RentRollTemplate(SpreadTemplate):
    spread_type = "RENT_ROLL"
    title = "Rent Roll"
    version = 3
    priority = 20
    requires_rent_roll = True
    backfill_map = {
        "OCCUPANCY_PCT": ("OCCUPANCY_PCT", None),
        "VACANCY_PCT": ("VACANCY_PCT", None),
        "IN_PLACE_RENT_MO": ("TOTAL_OCCUPIED_RENT_MO", None),
        "WALT_YEARS": ("WALT_YEARS", None),
    }

    def render(self, ctx: RenderContext) -> RenderedSpread:
        columns = [SpreadColumn(key=k, label=label, kind="attribute") for k, label in COLUMNS]
        as_of, rows = _latest_rows(ctx.rent_roll_rows)
        if not rows:
            return self._spread(
                ctx,
                columns=COLUMN_KEYS,
                columns_v2=columns,
                rows=[SpreadRow(key="no_data", label="No rent roll data", values=[self._empty_cell()])],
                totals=self._totals([], None),
                meta={"row_count": 0},
            )

        ordered = sorted(rows, key=_sort_key)
        out = [self._unit_row(r, as_of) for r in ordered]
        totals = self._totals(ordered, as_of)
        occupied = [r for r in ordered if is_occupied(r)]
        vacant = [r for r in ordered if not is_occupied(r)]
        out.append(self._total_row("TOTAL_OCCUPIED", "Total Occupied", "OCCUPIED", occupied))
        out.append(self._total_row("TOTAL_VACANT", "Total Vacant", "VACANT", vacant))
        out.append(self._total_row("TOTALS", "Totals", "ALL", ordered))

        return self._spread(
            ctx,
            as_of_date=as_of,
            columns=COLUMN_KEYS,
            columns_v2=columns,
            rows=out,
            totals=totals,
            meta={"row_count": len(ordered), "as_of_date": _iso(as_of)},
        )

    def _empty_cell(self) -> SpreadCell:
        return SpreadCell(
            value_by_col={k: None for k in COLUMN_KEYS},
            display_by_col={k: None for k in COLUMN_KEYS},
        )

    def _unit_row(self, r: RentRollRowIn, as_of: Optional[date]) -> SpreadRow:
        occupied = is_occupied(r)
        values: Dict[str, Any] = {
            "UNIT": r.unit_id,
            "TENANT": r.tenant_name,
            "STATUS": "OCCUPIED" if occupied else "VACANT",
            "SQFT": r.sqft if is_number(r.sqft) else None,
            "RENT_MO": monthly_rent(r),
            "RENT_YR": annual_rent(r),
            "MARKET_RENT_MO": r.market_rent_monthly if is_number(r.market_rent_monthly) else None,
            "LEASE_START": _iso(r.lease_start),
            "LEASE_END": _iso(r.lease_end),
            "WALT_YEARS": walt_years(r, as_of),
            "NOTES": r.notes,
        }
        display = dict(values)
        display["SQFT"] = format_number(values["SQFT"])
        display["RENT_MO"] = format_money(values["RENT_MO"])
        display["RENT_YR"] = format_money(values["RENT_YR"])
        display["MARKET_RENT_MO"] = format_money(values["MARKET_RENT_MO"])
        display["WALT_YEARS"] = format_number(values["WALT_YEARS"], 2)
        prov = CellProvenance(source="RentRollRow", row_id=r.id, source_document_id=r.source_document_id)
        cell = SpreadCell(
            as_of_date=as_of,
            source="RentRollRow",
            value_by_col=values,
            display_by_col=display,
            provenance_by_col={k: prov for k in COLUMN_KEYS},
        )
        label = r.unit_id if not r.tenant_name else f"{r.unit_id} - {r.tenant_name}"
        return SpreadRow(key=f"unit:{r.id}", label=label, section="UNITS", values=[cell])

    def _total_row(self, key: str, label: str, status: str, rows: List[RentRollRowIn]) -> SpreadRow:
        sqft = safe_sum(r.sqft for r in rows)
        rent_mo = safe_sum(monthly_rent(r) for r in rows)
        rent_yr = safe_sum(annual_rent(r) for r in rows)
        market = safe_sum(r.market_rent_monthly for r in rows)
        values: Dict[str, Any] = {k: None for k in COLUMN_KEYS}
        values.update({"UNIT": label, "STATUS": status, "SQFT": sqft, "RENT_MO": rent_mo, "RENT_YR": rent_yr, "MARKET_RENT_MO": market})
        display: Dict[str, Any] = dict(values)
        display.update({
            "SQFT": format_number(sqft),
            "RENT_MO": format_money(rent_mo),
            "RENT_YR": format_money(rent_yr),
            "MARKET_RENT_MO": format_money(market),
        })
        prov = CellProvenance(source="Computed")
        cell = SpreadCell(
            source="Computed",
            value_by_col=values,
            display_by_col=display,
            provenance_by_col={k: prov for k in ("SQFT", "RENT_MO", "RENT_YR", "MARKET_RENT_MO")},
        )
        return SpreadRow(key=key, label=label, section="TOTALS", values=[cell])

    def _totals(self, rows: List[RentRollRowIn], as_of: Optional[date]) -> Dict[str, Optional[float]]:
        occupied = [r for r in rows if is_occupied(r)]
        total_sqft = safe_sum(r.sqft for r in rows)
        occupied_sqft = safe_sum(r.sqft for r in occupied)
        occupancy = None
        # occupied units with unknown sqft make the occupied share unknown, not zero
        occupied_known = all(is_number(r.sqft) for r in occupied)
        if is_number(total_sqft) and total_sqft > 0 and occupied_known:
            occupancy = safe_divide(occupied_sqft if occupied else 0.0, total_sqft)
        vacancy = 1.0 - occupancy if occupancy is not None else None

        weighted = 0.0
        weight = 0.0
        for r in occupied:
            w = walt_years(r, as_of)
            rent = annual_rent(r)
            if w is None or not is_number(rent) or rent <= 0:
                continue
            weighted += w * rent
            weight += rent
        return {
            "TOTAL_OCCUPIED_RENT_MO": safe_sum(monthly_rent(r) for r in occupied),
            "TOTAL_OCCUPIED_SQFT": occupied_sqft,
            "TOTAL_SQFT": total_sqft,
            "OCCUPANCY_PCT": occupancy,
            "VACANCY_PCT": vacancy,
            "WALT_YEARS": weighted / weight if weight > 0 else None,
        }

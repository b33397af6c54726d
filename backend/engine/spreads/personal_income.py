"""
Personal income by tax year for one guarantor.
"""

from __future__ import annotations

from datetime import date
from typing import Iterable, List

from engine.facts import filter_facts, safe_sum, sort_latest_first
from engine.spreads.base import Grid, RenderContext, RowDef, SpreadTemplate
from models.facts import Fact
from models.spreads import RenderedSpread, SpreadColumn

INCOME_LINES = [
    "WAGES_W2",
    "SCHED_C_NET",
    "SCHED_E_NET",
    "K1_ORDINARY_INCOME",
    "INTEREST_DIVIDENDS",
    "OTHER_INCOME",
]

ROWS: List[RowDef] = [
    RowDef("WAGES_W2", "W-2 Wages", "INCOME"),
    RowDef("SCHED_C_NET", "Schedule C Net", "INCOME"),
    RowDef("SCHED_E_NET", "Schedule E Net", "INCOME"),
    RowDef("K1_ORDINARY_INCOME", "K-1 Ordinary Income", "INCOME"),
    RowDef("INTEREST_DIVIDENDS", "Interest & Dividends", "INCOME"),
    RowDef("OTHER_INCOME", "Other Income", "INCOME"),
    RowDef("TOTAL_PERSONAL_INCOME", "Total Personal Income", "TOTAL", "SUM(INCOME)"),
]

LATEST_COLUMN = "LATEST"


def year_columns(facts: Iterable[Fact]) -> List[SpreadColumn]:
    """One column per period-end year, ascending; undated facts share a trailing LATEST column."""
    facts = list(facts)
    years = sorted({f.fact_period_end.year for f in facts if f.fact_period_end})
    cols = [
        SpreadColumn(key=str(y), label=str(y), kind="period", start_date=date(y, 1, 1), end_date=date(y, 12, 31))
        for y in years
    ]
    if not cols or any(f.fact_period_end is None for f in facts):
        cols.append(SpreadColumn(key=LATEST_COLUMN, label="Latest", kind="other"))
    return cols


def year_key(f: Fact) -> str:
    return str(f.fact_period_end.year) if f.fact_period_end else LATEST_COLUMN


class PersonalIncomeTemplate(SpreadTemplate):
    spread_type = "PERSONAL_INCOME"
    title = "Personal Income"
    version = 1
    priority = 40
    owner_type = "PERSONAL"
    prerequisite_fact_types = ("PERSONAL_INCOME",)

    def render(self, ctx: RenderContext) -> RenderedSpread:
        facts = filter_facts(
            ctx.facts,
            fact_type="PERSONAL_INCOME",
            owner_type="PERSONAL",
            owner_entity_id=ctx.owner_entity_id,
        )
        columns = year_columns(facts)
        grid = Grid([r.key for r in ROWS], [c.key for c in columns])
        for f in sort_latest_first(facts):
            grid.set_fact(f.fact_key, year_key(f), f)
        for c in columns:
            grid.set_computed(
                "TOTAL_PERSONAL_INCOME", c.key, safe_sum(grid.get(k, c.key) for k in INCOME_LINES),
                "SUM(INCOME)", INCOME_LINES,
            )
        primary = columns[-1].key
        return self._spread(
            ctx,
            as_of_date=columns[-1].end_date,
            columns=[c.key for c in columns],
            columns_v2=columns,
            rows=grid.to_rows(ROWS, columns, primary=primary),
            totals={"TOTAL_PERSONAL_INCOME": grid.get("TOTAL_PERSONAL_INCOME", primary)},
            meta={"owner_entity_id": ctx.owner_entity_id},
        )

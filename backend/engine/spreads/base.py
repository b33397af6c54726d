"""
Shared building blocks for spread templates: the render context, row definitions,
and a column grid that tracks each cell's value together with its provenance.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Set

from engine.facts import (
    fact_ref,
    format_money,
    format_pct,
    format_ratio,
    is_number,
    merge_refs,
)
from models.facts import Fact, FactRef, RentRollRowIn
from models.spreads import (
    CellProvenance,
    RenderedSpread,
    SpreadCell,
    SpreadColumn,
    SpreadRow,
)


@dataclass
class RenderContext:
    facts: List[Fact]
    now: datetime
    rent_roll_rows: List[RentRollRowIn] = field(default_factory=list)
    owner_entity_id: Optional[str] = None
    deal_id: Optional[str] = None


@dataclass(frozen=True)
class RowDef:
    key: str
    label: str
    section: Optional[str] = None
    formula: Optional[str] = None
    kind: str = "money"  # money | pct | ratio


_FORMATTERS: Dict[str, Callable[[Optional[float]], Optional[str]]] = {
    "money": format_money,
    "pct": format_pct,
    "ratio": format_ratio,
}


def display_for(kind: str, value: Optional[float]) -> Optional[str]:
    return _FORMATTERS.get(kind, format_money)(value)


class Grid:
    """Values and provenance keyed by (row key, column key)."""

    def __init__(self, row_keys: Sequence[str], col_keys: Sequence[str]):
        self.row_keys = list(row_keys)
        self.col_keys = list(col_keys)
        self.values: Dict[str, Dict[str, Optional[float]]] = {r: {c: None for c in col_keys} for r in row_keys}
        self.prov: Dict[str, Dict[str, CellProvenance]] = {r: {} for r in row_keys}

    def get(self, row: str, col: str) -> Optional[float]:
        return self.values.get(row, {}).get(col)

    def has(self, row: str, col: str) -> bool:
        return is_number(self.get(row, col))

    def set_fact(self, row: str, col: str, fact: Fact, source: str = "Fact", overwrite: bool = False) -> bool:
        if row not in self.values or col not in self.values[row]:
            return False
        if not overwrite and self.has(row, col):
            return False
        if not is_number(fact.fact_value_num):
            return False
        self.values[row][col] = float(fact.fact_value_num)
        self.prov[row][col] = CellProvenance(
            source=source,
            inputs=[fact_ref(fact)],
            source_document_id=fact_ref(fact).source_document_id,
        )
        return True

    def set_value(
        self,
        row: str,
        col: str,
        value: Optional[float],
        source: str,
        inputs: Sequence[FactRef] = (),
        formula: Optional[str] = None,
    ) -> bool:
        """Store a value aggregated straight from facts rather than from other cells."""
        if self.has(row, col) or not is_number(value):
            return False
        self.values[row][col] = float(value)
        self.prov[row][col] = CellProvenance(source=source, inputs=list(inputs), formula=formula)
        return True

    def set_computed(
        self,
        row: str,
        col: str,
        value: Optional[float],
        formula: str,
        operands: Iterable[str] = (),
        operand_cols: Optional[Iterable[str]] = None,
        overwrite: bool = False,
    ) -> bool:
        """Store a derived value whose inputs are the union of its operand cells' inputs."""
        if not overwrite and self.has(row, col):
            return False
        if not is_number(value):
            return False
        cols = list(operand_cols) if operand_cols is not None else [col]
        refs = merge_refs(*[
            self.prov[o][c].inputs
            for o in operands
            for c in cols
            if o in self.prov and c in self.prov[o]
        ])
        self.values[row][col] = float(value)
        self.prov[row][col] = CellProvenance(source="Formula", formula=formula, inputs=refs)
        return True

    def to_rows(
        self, defs: Sequence[RowDef], columns: Sequence[SpreadColumn], primary: Optional[str] = None
    ) -> List[SpreadRow]:
        rows = []
        if primary is None and columns:
            primary = columns[-1].key
        primary_col = next((c for c in columns if c.key == primary), None)
        for d in defs:
            value_by_col = {c.key: self.get(d.key, c.key) for c in columns}
            display_by_col = {c.key: display_for(d.kind, value_by_col[c.key]) for c in columns}
            prov_by_col = {c.key: self.prov[d.key][c.key] for c in columns if c.key in self.prov.get(d.key, {})}
            all_inputs = merge_refs(*[p.inputs for p in prov_by_col.values()])
            primary_prov = prov_by_col.get(primary) if primary else None
            cell = SpreadCell(
                value=value_by_col.get(primary) if primary else None,
                display=display_by_col.get(primary) if primary else None,
                as_of_date=primary_col.end_date if primary_col else None,
                inputs=all_inputs,
                formula=d.formula,
                source=primary_prov.source if primary_prov else None,
                value_by_col=value_by_col,
                display_by_col=display_by_col,
                provenance_by_col=prov_by_col,
            )
            rows.append(SpreadRow(key=d.key, label=d.label, section=d.section, formula=d.formula, values=[cell]))
        return rows


class SpreadTemplate:
    """One financial report type. Subclasses set the class attributes and implement render()."""

    spread_type: str = ""
    title: str = ""
    version: int = 1
    priority: int = 100
    owner_type: str = "DEAL"
    prerequisite_fact_types: tuple = ()
    requires_rent_roll: bool = False
    # fact_key -> (row key, column key) written back as FINANCIAL_ANALYSIS facts after a render
    backfill_map: Dict[str, tuple] = {}

    def is_ready(self, fact_types: Set[str], has_rent_roll: bool) -> bool:
        if self.requires_rent_roll and not has_rent_roll:
            return False
        if self.prerequisite_fact_types and not (fact_types & set(self.prerequisite_fact_types)):
            return False
        return True

    def render(self, ctx: RenderContext) -> RenderedSpread:
        raise NotImplementedError

    def backfill(self, spread: RenderedSpread) -> Dict[str, Optional[float]]:
        out: Dict[str, Optional[float]] = {}
        for fact_key, (row_key, col_key) in self.backfill_map.items():
            if col_key is None:
                val = spread.totals.get(row_key)
            else:
                val = spread.cell_value(row_key, col_key)
            if is_number(val):
                out[fact_key] = float(val)
        return out

    def _spread(self, ctx: RenderContext, **kwargs) -> RenderedSpread:
        return RenderedSpread(
            spread_type=self.spread_type,
            title=self.title,
            template_version=self.version,
            generated_at=ctx.now,
            **kwargs,
        )


def month_start(d: date) -> date:
    return date(d.year, d.month, 1)


def add_months(d: date, months: int) -> date:
    idx = d.year * 12 + (d.month - 1) + months
    return date(idx // 12, idx % 12 + 1, 1)

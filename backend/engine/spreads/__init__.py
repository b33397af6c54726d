"""
Spread template registry and the single render entry point.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Dict, Iterable, List, Optional

from errors import TemplateMissingError
from engine.spreads.balance_sheet import BalanceSheetTemplate
from engine.spreads.base import RenderContext, SpreadTemplate
from engine.spreads.global_cash_flow import GlobalCashFlowTemplate
from engine.spreads.personal_income import PersonalIncomeTemplate
from engine.spreads.pfs import PersonalFinancialStatementTemplate
from engine.spreads.rent_roll import RentRollTemplate
from engine.spreads.t12 import T12Template
from models.facts import Fact, RentRollRowIn
from models.spreads import RenderedSpread

_LOG = logging.getLogger("uvicorn.error")

SPREAD_TEMPLATES: Dict[str, SpreadTemplate] = {
    t.spread_type: t
    for t in (
        T12Template(),
        RentRollTemplate(),
        BalanceSheetTemplate(),
        PersonalIncomeTemplate(),
        PersonalFinancialStatementTemplate(),
        GlobalCashFlowTemplate(),
    )
}


def get_template(spread_type: str) -> SpreadTemplate:
    try:
        return SPREAD_TEMPLATES[spread_type]
    except KeyError:
        raise TemplateMissingError(spread_type) from None


def templates_by_priority(spread_types: Iterable[str]) -> List[SpreadTemplate]:
    found = [SPREAD_TEMPLATES[t] for t in spread_types if t in SPREAD_TEMPLATES]
    return sorted(found, key=lambda t: (t.priority, t.spread_type))


def error_spread(spread_type: str, message: str, error_code: str, now: datetime) -> RenderedSpread:
    return RenderedSpread(
        spread_type=spread_type,
        title=spread_type,
        status="error",
        generated_at=now,
        error=message,
        error_code=error_code,
    )


def render_spread(
    spread_type: str,
    facts: List[Fact],
    rent_roll_rows: Optional[List[RentRollRowIn]] = None,
    owner_entity_id: Optional[str] = None,
    deal_id: Optional[str] = None,
    now: Optional[datetime] = None,
) -> RenderedSpread:
    """
    Render one spread from facts. An unregistered type yields an error spread instead of raising,
    so callers can always persist a terminal state.
    """
    now = now or datetime.utcnow()
    try:
        template = get_template(spread_type)
    except TemplateMissingError as e:
        _LOG.warning("SPREAD_TEMPLATE_MISSING spread_type=%s deal_id=%s", spread_type, deal_id)
        return error_spread(spread_type, str(e), "TEMPLATE_MISSING", now)
    ctx = RenderContext(
        facts=list(facts),
        now=now,
        rent_roll_rows=list(rent_roll_rows or []),
        owner_entity_id=owner_entity_id,
        deal_id=deal_id,
    )
    return template.render(ctx)

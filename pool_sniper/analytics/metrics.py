from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy import func, select

from pool_sniper.db import LedgerDelta, PositionRecord, session_scope


@dataclass
class Summary:
    total_positions: int
    holding: int
    closed: int
    winners: int
    losers: int
    realized_profit: int
    pending_ledger_deltas: int


def get_summary(SessionFactory) -> Summary:
    with session_scope(SessionFactory) as s:
        def count(*where) -> int:
            return s.scalar(select(func.count()).select_from(PositionRecord).where(*where)) or 0

        total = s.scalar(select(func.count()).select_from(PositionRecord)) or 0
        realized = s.scalar(
            select(func.coalesce(func.sum(PositionRecord.profit), 0)).where(PositionRecord.state == "closed")
        )
        pending = s.scalar(
            select(func.count()).select_from(LedgerDelta).where(LedgerDelta.delivered.is_(False))
        )
        return Summary(
            total_positions=total,
            holding=count(PositionRecord.state == "holding"),
            closed=count(PositionRecord.state == "closed"),
            winners=count(PositionRecord.state == "closed", PositionRecord.profit > 0),
            losers=count(PositionRecord.state == "closed", PositionRecord.profit < 0),
            realized_profit=int(realized or 0),
            pending_ledger_deltas=pending or 0,
        )

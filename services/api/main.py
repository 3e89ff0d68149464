from fastapi import FastAPI
from pydantic import BaseModel
from sqlalchemy import select

from pool_sniper.analytics.metrics import get_summary
from pool_sniper.config import AppSettings
from pool_sniper.db import PositionRecord, make_session_factory, session_scope

app = FastAPI(title="Pool Sniper API")
settings = AppSettings()
SessionFactory = make_session_factory(settings.database_url)


class PositionOut(BaseModel):
    id: int
    token_mint: str
    state: str
    entry_amount_in: str
    entry_amount_out: str
    entry_price: float
    entry_signature: str | None
    exit_amount_out: str | None
    exit_signature: str | None
    profit: int | None
    failed_exit_attempts: int

    @classmethod
    def from_model(cls, m: PositionRecord):
        return cls(
            id=m.id,
            token_mint=m.token_mint,
            state=m.state,
            entry_amount_in=m.entry_amount_in,
            entry_amount_out=m.entry_amount_out,
            entry_price=m.entry_price,
            entry_signature=m.entry_signature,
            exit_amount_out=m.exit_amount_out,
            exit_signature=m.exit_signature,
            profit=m.profit,
            failed_exit_attempts=m.failed_exit_attempts,
        )


@app.get("/health")
def health():
    return {"status": "ok", "dry_run": settings.dry_run}


@app.get("/positions")
def list_positions(limit: int = 50, state: str | None = None):
    with session_scope(SessionFactory) as s:
        q = select(PositionRecord).order_by(PositionRecord.id.desc()).limit(limit)
        if state:
            q = q.where(PositionRecord.state == state)
        rows = s.execute(q).scalars().all()
        return [PositionOut.from_model(r).model_dump() for r in rows]


@app.get("/summary")
def summary():
    s = get_summary(SessionFactory)
    return s.__dict__

from __future__ import annotations

import asyncio

import requests
from loguru import logger
from sqlalchemy import select

from pool_sniper.config import AppSettings
from pool_sniper.db import LedgerDelta, PositionRecord, session_scope
from pool_sniper.errors import TransientNetworkError
from pool_sniper.models import Position


def increment_balance(
    base_url: str, api_key: str | None, rpc: str, wallet: str, delta: int, timeout: float = 10
) -> None:
    url = f"{base_url.rstrip('/')}/rest/v1/rpc/{rpc}"
    headers = {"Content-Type": "application/json"}
    if api_key:
        headers["apikey"] = api_key
        headers["Authorization"] = f"Bearer {api_key}"
    try:
        r = requests.post(url, json={"p_wallet": wallet, "p_delta": delta}, headers=headers, timeout=timeout)
        r.raise_for_status()
    except requests.RequestException as e:
        raise TransientNetworkError(f"Ledger call failed: {e}") from e


class LedgerReporter:
    """Journals positions locally and forwards realized profit to the ledger.

    Bookkeeping never blocks trading: every failure here is logged, and an
    undelivered delta is kept in `ledger_deltas` until `flush_pending` gets it
    through.
    """

    def __init__(self, settings: AppSettings, SessionFactory, wallet: str):
        self.settings = settings
        self.SessionFactory = SessionFactory
        self.wallet = wallet

    @property
    def remote_enabled(self) -> bool:
        return bool(self.settings.ledger_url) and not self.settings.dry_run

    async def on_open(self, position: Position) -> None:
        try:
            position.record_id = await asyncio.to_thread(self._insert, position)
        except Exception as e:
            logger.exception("Could not journal position {}: {}", position.token_mint, e)

    async def on_exit_failed(self, position: Position) -> None:
        try:
            await asyncio.to_thread(self._record_attempts, position)
        except Exception as e:
            logger.exception("Could not journal exit attempts for {}: {}", position.token_mint, e)

    async def on_close(self, position: Position) -> None:
        try:
            await asyncio.to_thread(self._update, position)
        except Exception as e:
            logger.exception("Could not journal close of {}: {}", position.token_mint, e)
        if position.profit is None:
            return
        if not self.remote_enabled:
            logger.info("Ledger delivery disabled; profit {} for {} journaled only", position.profit, position.token_mint)
            return
        try:
            await self._deliver(position.profit)
            logger.info("Ledger updated for {}: {}", self.wallet, position.profit)
        except TransientNetworkError as e:
            logger.warning("Ledger update failed, queueing delta {}: {}", position.profit, e)
            try:
                await asyncio.to_thread(self._enqueue, position, str(e))
            except Exception as e2:
                logger.exception("Could not queue ledger delta {} for {}: {}", position.profit, position.token_mint, e2)

    async def _deliver(self, delta: int) -> None:
        await asyncio.to_thread(
            increment_balance,
            self.settings.ledger_url,
            self.settings.ledger_api_key,
            self.settings.ledger_rpc,
            self.wallet,
            delta,
            self.settings.http_timeout_sec,
        )

    async def flush_pending(self) -> int:
        if not self.remote_enabled:
            return 0
        pending = await asyncio.to_thread(self._pending)
        delivered = 0
        for delta_id, delta in pending:
            try:
                await self._deliver(delta)
            except TransientNetworkError as e:
                await asyncio.to_thread(self._mark, delta_id, False, str(e))
                logger.warning("Ledger retry failed for delta #{}: {}", delta_id, e)
                # The ledger is unreachable; the rest would fail the same way
                break
            await asyncio.to_thread(self._mark, delta_id, True, None)
            delivered += 1
        if delivered:
            logger.info("Delivered {} queued ledger delta(s)", delivered)
        return delivered

    # --- blocking DB helpers, run in worker threads ---

    @staticmethod
    def _new_record(position: Position) -> PositionRecord:
        rec = PositionRecord(
            token_mint=position.token_mint,
            state=position.state.value,
            entry_amount_in=str(position.entry_amount_in),
            entry_amount_out=str(position.entry_amount_out),
            entry_price=position.entry_price,
            entry_signature=position.entry_signature,
        )
        if position.opened_at:
            rec.opened_at = position.opened_at
        return rec

    def _insert(self, position: Position) -> int:
        with session_scope(self.SessionFactory) as s:
            rec = self._new_record(position)
            s.add(rec)
            s.flush()
            return rec.id

    def _update(self, position: Position) -> None:
        with session_scope(self.SessionFactory) as s:
            rec = s.get(PositionRecord, position.record_id) if position.record_id else None
            if rec is None:
                rec = self._new_record(position)
                s.add(rec)
            rec.state = position.state.value
            rec.exit_amount_out = str(position.exit_amount_out) if position.exit_amount_out is not None else None
            rec.exit_signature = position.exit_signature
            rec.profit = position.profit
            rec.failed_exit_attempts = position.failed_exit_attempts
            rec.closed_at = position.closed_at
            s.flush()
            position.record_id = rec.id

    def _record_attempts(self, position: Position) -> None:
        with session_scope(self.SessionFactory) as s:
            rec = s.get(PositionRecord, position.record_id) if position.record_id else None
            if rec is None:
                return
            rec.failed_exit_attempts = position.failed_exit_attempts

    def _enqueue(self, position: Position, error: str) -> None:
        with session_scope(self.SessionFactory) as s:
            s.add(
                LedgerDelta(
                    position_id=position.record_id,
                    wallet=self.wallet,
                    delta=position.profit,
                    attempts=1,
                    last_error=error,
                )
            )

    def _pending(self) -> list[tuple[int, int]]:
        with session_scope(self.SessionFactory) as s:
            rows = s.execute(
                select(LedgerDelta.id, LedgerDelta.delta)
                .where(LedgerDelta.delivered.is_(False))
                .order_by(LedgerDelta.id.asc())
            ).all()
            return [(r[0], r[1]) for r in rows]

    def _mark(self, delta_id: int, delivered: bool, error: str | None) -> None:
        with session_scope(self.SessionFactory) as s:
            rec = s.get(LedgerDelta, delta_id)
            if rec is None:
                return
            rec.attempts += 1
            rec.delivered = delivered
            rec.last_error = error

from __future__ import annotations

import asyncio
import re
from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass, field
from typing import Any

from loguru import logger
from pydantic import BaseModel, ValidationError
from solana.rpc.commitment import Confirmed
from solana.rpc.websocket_api import connect as ws_connect
from solders.pubkey import Pubkey
from solders.rpc.config import RpcTransactionLogsFilterMentions

from pool_sniper.config import AppSettings
from pool_sniper.errors import ParseError
from pool_sniper.models import PoolCreationEvent

MINT_PATTERN = re.compile(r"mint\s*:?\s*([0-9A-Za-z]+)", re.IGNORECASE)


class LogsValue(BaseModel):
    signature: str = ""
    err: Any = None
    logs: list[str]


def extract_token_from_logs(logs: list[str]) -> str | None:
    # First matching line decides; an unparsable capture drops the event
    for line in logs:
        m = MINT_PATTERN.search(line)
        if m:
            try:
                return str(Pubkey.from_string(m.group(1)))
            except ValueError:
                return None
    return None


def parse_notification(msg) -> LogsValue | None:
    """Validate one websocket message. Returns None for subscription acks."""
    result = getattr(msg, "result", None)
    if isinstance(result, int):
        return None
    value = getattr(result, "value", None)
    if value is None:
        raise ParseError(f"Not a logs notification: {type(msg).__name__}")
    sig = getattr(value, "signature", None)
    try:
        return LogsValue.model_validate(
            {
                "signature": str(sig) if sig is not None else "",
                "err": getattr(value, "err", None),
                "logs": getattr(value, "logs", None),
            }
        )
    except ValidationError as e:
        raise ParseError(f"Malformed logs notification: {e}") from e


@dataclass
class PoolEventListener:
    settings: AppSettings
    connect: Callable = field(default=ws_connect)

    def handle_message(self, msg) -> PoolCreationEvent | None:
        try:
            value = parse_notification(msg)
        except ParseError as e:
            logger.debug("Skipping message: {}", e)
            return None
        if value is None or value.err is not None:
            return None
        mint = extract_token_from_logs(value.logs)
        if not mint:
            return None
        return PoolCreationEvent(
            token_mint=mint, raw_log_lines=tuple(value.logs), signature=value.signature
        )

    async def _consume(self, websocket) -> AsyncIterator[PoolCreationEvent]:
        while True:
            batch = await websocket.recv()
            msgs = batch if isinstance(batch, list) else [batch]
            for msg in msgs:
                event = self.handle_message(msg)
                if event:
                    logger.info("Pool candidate {} (tx {})", event.token_mint, event.signature or "?")
                    yield event

    async def events(self, shutdown: asyncio.Event) -> AsyncIterator[PoolCreationEvent]:
        program = Pubkey.from_string(self.settings.raydium_program_id)
        while not shutdown.is_set():
            try:
                async with self.connect(self.settings.ws_url) as websocket:
                    await websocket.logs_subscribe(
                        filter_=RpcTransactionLogsFilterMentions(program), commitment=Confirmed
                    )
                    logger.info("Logs subscription established for program {}", program)
                    async for event in self._consume(websocket):
                        yield event
                        if shutdown.is_set():
                            return
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.exception("Pool log subscription error: {}", e)
            if shutdown.is_set():
                break
            try:
                await asyncio.wait_for(shutdown.wait(), timeout=self.settings.reconnect_delay_sec)
            except asyncio.TimeoutError:
                logger.info("Reconnecting logs subscription")

from __future__ import annotations

import asyncio
from datetime import datetime, timezone

from loguru import logger

from pool_sniper.aggregators.jupiter import RouteQuoter
from pool_sniper.analytics.pricing import PriceFeed, raw_price_scale
from pool_sniper.config import AppSettings
from pool_sniper.errors import (
    ParseError,
    SwapConfirmTimeoutError,
    SwapExecutionFailure,
    SwapFailedError,
    TransientNetworkError,
)
from pool_sniper.execution.swap_executor import SwapExecutor
from pool_sniper.ledger import LedgerReporter
from pool_sniper.models import Position, PositionState, SwapQuoteRoute, SwapResult


def should_exit(ratio: float, take_profit: float, stop_loss: float) -> bool:
    # Inclusive on both thresholds
    return ratio >= take_profit or ratio <= stop_loss


class PositionMonitor:
    """Owns one token's position from entry swap to exit swap.

    Every step for a token runs sequentially inside this monitor's task. The
    poll loop ends when the position reaches CLOSED or ABANDONED, or when
    shutdown is requested (an open position is then left HOLDING and logged).
    """

    def __init__(
        self,
        settings: AppSettings,
        token_mint: str,
        quoter: RouteQuoter,
        executor: SwapExecutor,
        price_feed: PriceFeed,
        reporter: LedgerReporter,
        token_decimals: int | None = None,
        shutdown: asyncio.Event | None = None,
    ):
        self.settings = settings
        self.quoter = quoter
        self.executor = executor
        self.price_feed = price_feed
        self.reporter = reporter
        self.shutdown = shutdown or asyncio.Event()
        self.position = Position(token_mint=token_mint)
        self.price_scale = raw_price_scale(settings.quote_decimals, token_decimals)
        # Sell submitted but not confirmed: (signature, route)
        self._pending_exit: tuple[str, SwapQuoteRoute] | None = None

    @property
    def mint(self) -> str:
        return self.position.token_mint

    async def run(self) -> Position:
        try:
            if await self.enter():
                await self._poll()
        except asyncio.CancelledError:
            if self.position.active:
                logger.warning("Monitor for {} cancelled in state {}", self.mint, self.position.state.value)
            raise
        return self.position

    async def enter(self) -> bool:
        pos = self.position
        pos.transition(PositionState.ENTERING)
        amount_in = self.settings.quote_amount
        try:
            route = await self.quoter.quote(self.settings.quote_mint, self.mint, amount_in)
            if route is None:
                logger.warning("No buy route found for {}", self.mint)
                return self._abandon()
            try:
                result = await self.executor.execute(route)
            except SwapConfirmTimeoutError as e:
                logger.warning("Buy {} for {} timed out; watching until it lands or expires", e.signature, self.mint)
                result = await self._await_buy(e.signature, route)
                if result is None:
                    logger.warning("Shutdown while buy {} for {} is unresolved; abandoning", e.signature, self.mint)
                    return self._abandon()
        except (TransientNetworkError, ParseError, SwapExecutionFailure) as e:
            logger.warning("Buy failed for {}: {}", self.mint, e)
            return self._abandon()

        if result.realized_out_amount <= 0:
            logger.warning("Buy for {} returned no tokens (tx {})", self.mint, result.signature)
            return self._abandon()

        pos.entry_amount_in = amount_in
        pos.entry_amount_out = result.realized_out_amount
        pos.entry_signature = result.signature
        pos.opened_at = datetime.now(timezone.utc)
        pos.transition(PositionState.HOLDING)
        logger.info(
            "Bought {} {} for {} (entry price {:.10g}) tx: {}",
            pos.entry_amount_out,
            self.mint,
            amount_in,
            pos.entry_price,
            result.signature,
        )
        await self.reporter.on_open(pos)
        return True

    async def _await_buy(self, signature: str, route: SwapQuoteRoute) -> SwapResult | None:
        """Look the buy up until it confirms. Raises once it failed or expired; None on shutdown."""
        while True:
            result = await self.executor.recover(signature, route)
            if result is not None:
                return result
            try:
                await asyncio.wait_for(self.shutdown.wait(), timeout=self.settings.confirm_poll_sec)
            except asyncio.TimeoutError:
                continue
            return None

    def _abandon(self) -> bool:
        self.position.transition(PositionState.ABANDONED)
        return False

    async def _poll(self) -> None:
        while not self.position.state.terminal:
            try:
                await asyncio.wait_for(self.shutdown.wait(), timeout=self.settings.poll_interval_sec)
            except asyncio.TimeoutError:
                pass
            else:
                pos = self.position
                logger.warning(
                    "Shutdown requested; leaving {} open ({} tokens, entry price {:.10g})",
                    self.mint,
                    pos.entry_amount_out,
                    pos.entry_price,
                )
                return
            try:
                await self.tick()
            except Exception as e:
                logger.exception("Monitor error for {}: {}", self.mint, e)

    def ratio(self, price: float) -> float:
        return price * self.price_scale / self.position.entry_price

    async def tick(self) -> None:
        """One poll: resolve a pending sell, else fetch price and decide exit."""
        pos = self.position
        if pos.state is not PositionState.HOLDING:
            return
        if self._pending_exit and not await self._resolve_pending_exit():
            return

        try:
            price = await self.price_feed.price(self.mint)
        except (TransientNetworkError, ParseError) as e:
            logger.warning("Price fetch failed for {}: {}", self.mint, e)
            return
        if price is None:
            logger.info("No price yet for {}", self.mint)
            return

        ratio = self.ratio(price)
        if not should_exit(ratio, self.settings.take_profit, self.settings.stop_loss):
            logger.info("Price {} {:.10g} change {:.4f}", self.mint, price, ratio)
            return

        logger.info("Exit triggered for {} at change {:.4f}", self.mint, ratio)
        pos.transition(PositionState.EXITING)
        try:
            await self._sell()
        finally:
            # Anything short of CLOSED goes back to HOLDING for the next tick
            if pos.state is PositionState.EXITING:
                pos.transition(PositionState.HOLDING)

    async def _sell(self) -> None:
        amount = self.position.entry_amount_out
        try:
            route = await self.quoter.quote(self.mint, self.settings.quote_mint, amount)
            if route is None:
                logger.warning("No sell route found for {}", self.mint)
                await self._exit_failed()
                return
            result = await self.executor.execute(route)
        except SwapConfirmTimeoutError as e:
            logger.warning("Sell {} for {} timed out; will check status next tick", e.signature, self.mint)
            self._pending_exit = (e.signature, route)
            return
        except (TransientNetworkError, ParseError, SwapExecutionFailure) as e:
            logger.warning("Sell failed for {}: {}", self.mint, e)
            await self._exit_failed()
            return
        await self._close(result)

    async def _resolve_pending_exit(self) -> bool:
        """True when the tick may go on to a fresh exit decision."""
        signature, route = self._pending_exit
        try:
            result = await self.executor.recover(signature, route)
        except SwapFailedError as e:
            logger.warning("Pending sell for {} failed: {}", self.mint, e)
            self._pending_exit = None
            await self._exit_failed()
            return True
        if result is None:
            logger.info("Sell {} for {} still unconfirmed", signature, self.mint)
            return False
        self._pending_exit = None
        self.position.transition(PositionState.EXITING)
        await self._close(result)
        return False

    async def _exit_failed(self) -> None:
        pos = self.position
        pos.failed_exit_attempts += 1
        if pos.failed_exit_attempts % self.settings.exit_alert_after == 0:
            logger.error(
                "ALERT: {} failed exit attempts for {} ({} tokens still held)",
                pos.failed_exit_attempts,
                self.mint,
                pos.entry_amount_out,
            )
        await self.reporter.on_exit_failed(pos)

    async def _close(self, result: SwapResult) -> None:
        pos = self.position
        pos.exit_amount_out = result.realized_out_amount
        pos.exit_signature = result.signature
        pos.profit = result.realized_out_amount - pos.entry_amount_in
        pos.closed_at = datetime.now(timezone.utc)
        pos.transition(PositionState.CLOSED)
        logger.info("Sold {} tx: {} profit {}", self.mint, result.signature, pos.profit)
        await self.reporter.on_close(pos)

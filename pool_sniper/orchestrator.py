from __future__ import annotations

import asyncio

from loguru import logger

from pool_sniper.aggregators.jupiter import RouteQuoter
from pool_sniper.analytics.pricing import PriceFeed
from pool_sniper.chains.pool_listener import PoolEventListener
from pool_sniper.config import AppSettings
from pool_sniper.execution.position_monitor import PositionMonitor
from pool_sniper.execution.swap_executor import SwapExecutor
from pool_sniper.ledger import LedgerReporter
from pool_sniper.models import PoolCreationEvent
from pool_sniper.risk import RiskFilter


class Orchestrator:
    """Listener -> risk filter -> one PositionMonitor task per accepted mint."""

    def __init__(
        self,
        settings: AppSettings,
        listener: PoolEventListener,
        risk_filter: RiskFilter,
        quoter: RouteQuoter,
        executor: SwapExecutor,
        price_feed: PriceFeed,
        reporter: LedgerReporter,
    ):
        self.settings = settings
        self.listener = listener
        self.risk_filter = risk_filter
        self.quoter = quoter
        self.executor = executor
        self.price_feed = price_feed
        self.reporter = reporter
        self.shutdown = asyncio.Event()
        self.monitors: dict[str, asyncio.Task] = {}
        self._screening: dict[str, asyncio.Task] = {}

    def request_shutdown(self) -> None:
        if not self.shutdown.is_set():
            logger.info("Shutdown requested; {} monitor(s) outstanding", len(self.monitors))
        self.shutdown.set()

    def busy(self, mint: str) -> bool:
        return mint in self.monitors or mint in self._screening

    def on_event(self, event: PoolCreationEvent) -> asyncio.Task | None:
        mint = event.token_mint
        if mint == self.settings.quote_mint or self.busy(mint):
            return None
        if len(self.monitors) >= self.settings.max_open_positions:
            logger.warning(
                "Skipping {}: {} monitors already running (max {})",
                mint,
                len(self.monitors),
                self.settings.max_open_positions,
            )
            return None
        task = asyncio.create_task(self.screen(mint), name=f"screen-{mint}")
        self._screening[mint] = task
        task.add_done_callback(lambda _t: self._screening.pop(mint, None))
        return task

    async def screen(self, mint: str) -> asyncio.Task | None:
        verdict = await self.risk_filter.check(mint)
        if not verdict.accepted or self.shutdown.is_set():
            return None
        if len(self.monitors) >= self.settings.max_open_positions:
            logger.warning("Skipping {}: monitor cap reached during screening", mint)
            return None
        monitor = PositionMonitor(
            self.settings,
            mint,
            quoter=self.quoter,
            executor=self.executor,
            price_feed=self.price_feed,
            reporter=self.reporter,
            token_decimals=verdict.decimals,
            shutdown=self.shutdown,
        )
        task = asyncio.create_task(monitor.run(), name=f"monitor-{mint}")
        self.monitors[mint] = task
        task.add_done_callback(lambda t: self._monitor_done(mint, t))
        return task

    def _monitor_done(self, mint: str, task: asyncio.Task) -> None:
        self.monitors.pop(mint, None)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.opt(exception=exc).error("Monitor for {} crashed: {}", mint, exc)
            return
        position = task.result()
        logger.info("Monitor for {} finished in state {}", mint, position.state.value)

    async def _listen(self) -> None:
        async for event in self.listener.events(self.shutdown):
            self.on_event(event)

    async def _retry_ledger(self) -> None:
        while not self.shutdown.is_set():
            try:
                await asyncio.wait_for(self.shutdown.wait(), timeout=self.settings.ledger_retry_interval_sec)
            except asyncio.TimeoutError:
                pass
            try:
                await self.reporter.flush_pending()
            except Exception as e:
                logger.exception("Ledger retry error: {}", e)

    async def run(self) -> None:
        logger.info(
            "Sniper started (dry_run={}, program={})", self.settings.dry_run, self.settings.raydium_program_id
        )
        listen = asyncio.create_task(self._listen(), name="pool-listener")
        ledger = asyncio.create_task(self._retry_ledger(), name="ledger-retry")
        try:
            await self.shutdown.wait()
        finally:
            self.shutdown.set()
            # The listener may be parked in recv(); stop it outright
            listen.cancel()
            await asyncio.gather(listen, return_exceptions=True)
            pending = list(self._screening.values()) + list(self.monitors.values())
            if pending:
                logger.info("Waiting for {} task(s) to wind down", len(pending))
                await asyncio.gather(*pending, return_exceptions=True)
            await ledger
        logger.info("Sniper stopped")

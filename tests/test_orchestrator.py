from __future__ import annotations

import asyncio

WSOL = "So11111111111111111111111111111111111111112"
GOOD = "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v"
RUG = "Es9vMFrzaCERmJfrF4H2FYxTea7PhYRYrRyYLfnLKz7j"


class FakeRiskFilter:
    def __init__(self):
        self.checked = []

    async def check(self, mint):
        from pool_sniper.models import RiskReason, RiskVerdict

        self.checked.append(mint)
        if mint == GOOD:
            return RiskVerdict(True, RiskReason.ACCEPTED, 6)
        return RiskVerdict(False, RiskReason.MINT_AUTHORITY, 6)


class FakeQuoter:
    def __init__(self):
        self.bought = asyncio.Event()
        self.calls = []

    async def quote(self, input_mint, output_mint, amount):
        from pool_sniper.models import SwapQuoteRoute

        self.calls.append(output_mint)
        self.bought.set()
        return SwapQuoteRoute(input_mint, output_mint, amount, 500, {})


class FakeListener:
    def __init__(self, quoter, mints):
        self.quoter = quoter
        self.mints = mints

    async def events(self, shutdown):
        from pool_sniper.models import PoolCreationEvent

        for mint in self.mints:
            yield PoolCreationEvent(token_mint=mint, raw_log_lines=(f"mint: {mint}",))
        await self.quoter.bought.wait()
        await asyncio.sleep(0.01)
        shutdown.set()
        await asyncio.Event().wait()  # parked like a real socket until cancelled


class FakeReporter:
    def __init__(self):
        self.opened = []

    async def on_open(self, position):
        self.opened.append(position.token_mint)

    async def on_close(self, position):
        pass

    async def on_exit_failed(self, position):
        pass

    async def flush_pending(self):
        return 0


def make_orchestrator(mints, **overrides):
    from pool_sniper.config import AppSettings
    from pool_sniper.execution.swap_executor import SwapExecutor
    from pool_sniper.orchestrator import Orchestrator

    settings = AppSettings(poll_interval_sec=5, **overrides)
    quoter = FakeQuoter()
    orch = Orchestrator(
        settings,
        listener=FakeListener(quoter, mints),
        risk_filter=FakeRiskFilter(),
        quoter=quoter,
        executor=SwapExecutor(settings=settings, client=None, keypair=None, pubkey=None),
        price_feed=None,
        reporter=FakeReporter(),
    )
    return orch, quoter


def test_pipeline_screens_dedupes_and_spawns_one_monitor():
    async def scenario():
        orch, quoter = make_orchestrator([GOOD, GOOD, RUG, WSOL])
        await asyncio.wait_for(orch.run(), timeout=5)
        return orch, quoter

    orch, quoter = asyncio.run(scenario())
    assert orch.risk_filter.checked == [GOOD, RUG]
    assert quoter.calls == [GOOD]
    assert orch.reporter.opened == [GOOD]
    assert orch.monitors == {}


def test_monitor_cap_skips_new_candidates():
    from pool_sniper.models import PoolCreationEvent

    orch, _ = make_orchestrator([], max_open_positions=1)
    orch.monitors["other"] = object()
    assert orch.on_event(PoolCreationEvent(token_mint=GOOD, raw_log_lines=())) is None
    assert orch.risk_filter.checked == []

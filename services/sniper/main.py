import asyncio
import signal
import sys

from loguru import logger

from pool_sniper.aggregators.jupiter import RouteQuoter
from pool_sniper.analytics.pricing import PriceFeed
from pool_sniper.chains.pool_listener import PoolEventListener
from pool_sniper.chains.solana import make_client
from pool_sniper.config import load_settings
from pool_sniper.db import make_session_factory
from pool_sniper.errors import ConfigurationError
from pool_sniper.execution.swap_executor import SwapExecutor
from pool_sniper.ledger import LedgerReporter
from pool_sniper.orchestrator import Orchestrator
from pool_sniper.risk import RiskFilter


async def run(settings, SessionFactory):
    client = make_client(settings)
    try:
        executor = SwapExecutor.create(settings, client)
        wallet = str(executor.pubkey) if executor.pubkey else "dry-run"
        orchestrator = Orchestrator(
            settings,
            listener=PoolEventListener(settings),
            risk_filter=RiskFilter(settings, client),
            quoter=RouteQuoter(settings),
            executor=executor,
            price_feed=PriceFeed(settings),
            reporter=LedgerReporter(settings, SessionFactory, wallet=wallet),
        )
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, orchestrator.request_shutdown)
            except NotImplementedError:  # Windows
                pass
        await orchestrator.run()
    finally:
        await client.close()


def main():
    try:
        settings = load_settings()
    except ConfigurationError as e:
        logger.error("{}", e)
        sys.exit(1)
    logger.remove()
    logger.add(lambda m: print(m, end=""), level=settings.log_level)

    SessionFactory = make_session_factory(settings.database_url)
    try:
        asyncio.run(run(settings, SessionFactory))
    except ConfigurationError as e:
        # Raised before the subscription starts (key material)
        logger.error("{}", e)
        sys.exit(1)


if __name__ == "__main__":
    main()

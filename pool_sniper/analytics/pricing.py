from __future__ import annotations

import asyncio

from pool_sniper.aggregators import jupiter
from pool_sniper.config import AppSettings


class PriceFeed:
    """Current token price, quoted in the configured quote asset (UI units)."""

    def __init__(self, settings: AppSettings):
        self.settings = settings

    async def price(self, token_mint: str) -> float | None:
        return await asyncio.to_thread(
            jupiter.get_price,
            self.settings.jupiter_price_url,
            token_mint,
            self.settings.quote_mint,
            self.settings.http_timeout_sec,
        )


def raw_price_scale(quote_decimals: int, token_decimals: int | None) -> float:
    """Factor turning a UI price (quote per token) into raw units (quote atoms per token atom)."""
    if token_decimals is None:
        return 1.0
    return 10.0 ** (quote_decimals - token_decimals)

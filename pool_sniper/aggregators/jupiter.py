from __future__ import annotations

import asyncio
from typing import Any

import requests
from loguru import logger
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from pool_sniper.config import AppSettings
from pool_sniper.errors import ParseError, SwapBuildError, TransientNetworkError
from pool_sniper.models import SwapQuoteRoute

# Error codes Jupiter returns (HTTP 400) when there is simply nothing to trade through
NO_ROUTE_ERROR_CODES = {"COULD_NOT_FIND_ANY_ROUTE", "NO_ROUTES_FOUND", "TOKEN_NOT_TRADABLE"}


class QuoteRoute(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    in_amount: int = Field(alias="inAmount", ge=0)
    out_amount: int = Field(alias="outAmount", ge=0)
    input_mint: str | None = Field(default=None, alias="inputMint")
    output_mint: str | None = Field(default=None, alias="outputMint")


class QuoteListResponse(BaseModel):
    data: list[QuoteRoute] = []


class SwapResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    swap_transaction: str | None = Field(default=None, alias="swapTransaction")
    # Block height after which the transaction can no longer land
    last_valid_block_height: int | None = Field(default=None, alias="lastValidBlockHeight")


class PriceEntry(BaseModel):
    price: float | None = None


class PriceResponse(BaseModel):
    data: dict[str, PriceEntry | None] = {}


def _json(r: requests.Response) -> Any:
    try:
        return r.json()
    except ValueError as e:
        raise ParseError(f"Non-JSON response from {r.url}: {e}") from e


def get_quote(
    quote_url: str,
    input_mint: str,
    output_mint: str,
    amount: int,
    slippage_bps: int,
    timeout: float = 15,
) -> SwapQuoteRoute | None:
    params = {
        "inputMint": input_mint,
        "outputMint": output_mint,
        "amount": str(amount),
        "slippageBps": str(slippage_bps),
        "onlyDirectRoutes": "false",
    }
    try:
        r = requests.get(quote_url, params=params, timeout=timeout)
    except requests.RequestException as e:
        raise TransientNetworkError(f"Quote request failed: {e}") from e
    if r.status_code == 400:
        body = _json(r)
        code = body.get("errorCode") if isinstance(body, dict) else None
        if code in NO_ROUTE_ERROR_CODES:
            return None
    if not r.ok:
        raise TransientNetworkError(f"Quote request failed: HTTP {r.status_code} {r.text}")
    data = _json(r)
    try:
        if isinstance(data, dict) and "outAmount" in data:
            # v6 replies with a single best quote object
            routes = [(QuoteRoute.model_validate(data), data)]
        else:
            parsed = QuoteListResponse.model_validate(data)
            raw = data.get("data") or []
            routes = list(zip(parsed.data, raw))
    except ValidationError as e:
        raise ParseError(f"Malformed quote response: {e}") from e
    if not routes:
        return None
    # Return the first route
    route, descriptor = routes[0]
    return SwapQuoteRoute(
        input_mint=route.input_mint or input_mint,
        output_mint=route.output_mint or output_mint,
        in_amount=route.in_amount,
        expected_out_amount=route.out_amount,
        descriptor=descriptor,
    )


def get_swap_transaction(
    swap_url: str, route: SwapQuoteRoute, user_public_key: str, timeout: float = 20
) -> SwapResponse:
    payload = {
        "quoteResponse": route.descriptor,
        "userPublicKey": user_public_key,
        "wrapAndUnwrapSol": True,
        "useTokenLedger": False,
        "asLegacyTransaction": False,
        "useSharedAccounts": True,
    }
    try:
        r = requests.post(swap_url, json=payload, timeout=timeout)
        r.raise_for_status()
    except requests.RequestException as e:
        raise SwapBuildError(f"Swap build request failed: {e}") from e
    try:
        body = SwapResponse.model_validate(_json(r))
    except (ValidationError, ParseError) as e:
        raise SwapBuildError(f"Malformed swap response: {e}") from e
    if not body.swap_transaction:
        raise SwapBuildError("No swap transaction from Jupiter")
    return body


def get_price(price_url: str, mint: str, vs_token: str | None = None, timeout: float = 10) -> float | None:
    params = {"ids": mint}
    if vs_token:
        params["vsToken"] = vs_token
    try:
        r = requests.get(price_url, params=params, timeout=timeout)
        r.raise_for_status()
    except requests.RequestException as e:
        raise TransientNetworkError(f"Price request failed: {e}") from e
    try:
        parsed = PriceResponse.model_validate(_json(r))
    except ValidationError as e:
        raise ParseError(f"Malformed price response: {e}") from e
    entry = parsed.data.get(mint)
    if entry is None or entry.price is None:
        return None
    return entry.price


class RouteQuoter:
    def __init__(self, settings: AppSettings):
        self.settings = settings

    async def quote(self, input_mint: str, output_mint: str, amount: int) -> SwapQuoteRoute | None:
        route = await asyncio.to_thread(
            get_quote,
            self.settings.jupiter_quote_url,
            input_mint,
            output_mint,
            amount,
            self.settings.slippage_bps,
            self.settings.http_timeout_sec,
        )
        if route is None:
            logger.info("No route {} -> {} for amount {}", input_mint, output_mint, amount)
        return route

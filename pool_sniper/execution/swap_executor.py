from __future__ import annotations

import asyncio
import base64
import time
from dataclasses import dataclass, field
from typing import Any

from loguru import logger
from solana.rpc.async_api import AsyncClient
from solana.rpc.types import TxOpts
from solders.keypair import Keypair
from solders.pubkey import Pubkey
from solders.signature import Signature

from pool_sniper.aggregators import jupiter
from pool_sniper.chains.solana import rpc_result
from pool_sniper.config import AppSettings, load_keypair
from pool_sniper.errors import (
    SwapBuildError,
    SwapConfirmTimeoutError,
    SwapExpiredError,
    SwapFailedError,
    SwapSubmitError,
)
from pool_sniper.models import SwapQuoteRoute, SwapResult, TxStatus

DRY_RUN_SIGNATURE = "dry-run"
CONFIRMED_LEVELS = {"confirmed", "finalized"}
NATIVE_MINT = "So11111111111111111111111111111111111111112"


def sign_swap_transaction(swap_tx_b64: str, keypair: Keypair) -> bytes:
    try:
        raw = base64.b64decode(swap_tx_b64)
    except ValueError as e:
        raise SwapBuildError(f"Swap transaction is not base64: {e}") from e
    # Jupiter returns versioned transactions by default; legacy only on request
    try:
        from solders.transaction import VersionedTransaction

        vtx = VersionedTransaction.from_bytes(raw)
        # Reconstruct signed transaction using message + signer
        return bytes(VersionedTransaction(vtx.message, [keypair]))
    except Exception:
        try:
            from solders.transaction import Transaction

            tx = Transaction.from_bytes(raw)
            tx.partial_sign([keypair], tx.message.recent_blockhash)
            return bytes(tx)
        except Exception as e2:
            raise SwapBuildError(f"Unable to deserialize/sign Jupiter swap tx: {e2}") from e2


def token_balance_delta(meta: dict[str, Any], owner: str, mint: str) -> int | None:
    """Net change of `owner`'s `mint` balance, matching pre/post entries by account index."""
    pre = {b.get("accountIndex"): b for b in meta.get("preTokenBalances") or []}
    post = meta.get("postTokenBalances") or []
    for q in post:
        if q.get("owner") != owner or q.get("mint") != mint:
            continue
        p = pre.get(q.get("accountIndex")) or {}
        pa = int((p.get("uiTokenAmount") or {}).get("amount") or 0)
        qa = int((q.get("uiTokenAmount") or {}).get("amount") or 0)
        return qa - pa
    return None


def native_balance_delta(tx: dict[str, Any], owner: str) -> int | None:
    """Net lamport change of `owner`, with the fee added back when `owner` paid it."""
    meta = tx.get("meta") or {}
    keys = ((tx.get("transaction") or {}).get("message") or {}).get("accountKeys") or []
    keys = [k.get("pubkey") if isinstance(k, dict) else k for k in keys]
    if owner not in keys:
        return None
    i = keys.index(owner)
    pre = meta.get("preBalances") or []
    post = meta.get("postBalances") or []
    if i >= len(pre) or i >= len(post):
        return None
    delta = int(post[i]) - int(pre[i])
    if i == 0:
        delta += int(meta.get("fee") or 0)
    return delta


@dataclass
class SwapExecutor:
    settings: AppSettings
    client: AsyncClient
    keypair: Keypair | None
    pubkey: Pubkey | None
    # signature -> last block height at which it can still land
    valid_until: dict[str, int] = field(default_factory=dict, repr=False)

    @classmethod
    def create(cls, settings: AppSettings, client: AsyncClient) -> SwapExecutor:
        kp, pk = load_keypair(settings)
        return cls(settings=settings, client=client, keypair=kp, pubkey=pk)

    @property
    def live(self) -> bool:
        return not self.settings.dry_run and self.keypair is not None and self.pubkey is not None

    async def execute(self, route: SwapQuoteRoute) -> SwapResult:
        if route.consumed:
            raise SwapBuildError("Route already used; request a fresh quote")
        route.consumed = True

        if not self.live:
            logger.info(
                "Dry run: skipping swap {} -> {} ({} in, ~{} out)",
                route.input_mint,
                route.output_mint,
                route.in_amount,
                route.expected_out_amount,
            )
            return SwapResult(signature=DRY_RUN_SIGNATURE, realized_out_amount=route.expected_out_amount)

        built = await asyncio.to_thread(
            jupiter.get_swap_transaction,
            self.settings.jupiter_swap_url,
            route,
            str(self.pubkey),
            self.settings.http_timeout_sec,
        )
        raw_signed = sign_swap_transaction(built.swap_transaction, self.keypair)
        last_valid = built.last_valid_block_height
        if last_valid is None:
            # The latest blockhash outlives the one Jupiter used, so this bound is late but safe
            last_valid = await self.latest_valid_height()

        try:
            resp = await self.client.send_raw_transaction(
                raw_signed, opts=TxOpts(skip_preflight=True, skip_confirmation=True)
            )
        except Exception as e:
            raise SwapSubmitError(f"Broadcast failed: {e}") from e
        signature = str(resp.value)
        if last_valid is not None:
            self.valid_until[signature] = last_valid
        else:
            logger.warning("No expiry height known for {}; it can only resolve by status", signature)
        logger.info("Submitted swap {} -> {}: {}", route.input_mint, route.output_mint, signature)

        await self.await_confirmation(signature)
        return SwapResult(signature=signature, realized_out_amount=await self.realized_output(signature, route))

    async def await_confirmation(self, signature: str) -> None:
        deadline = time.monotonic() + self.settings.confirm_timeout_sec
        while True:
            status = await self.lookup_status(signature)
            if status is TxStatus.CONFIRMED:
                self.valid_until.pop(signature, None)
                return
            self._raise_if_final(signature, status)
            if time.monotonic() >= deadline:
                raise SwapConfirmTimeoutError(signature, self.settings.confirm_timeout_sec)
            await asyncio.sleep(self.settings.confirm_poll_sec)

    def _raise_if_final(self, signature: str, status: TxStatus) -> None:
        if status is TxStatus.FAILED:
            self.valid_until.pop(signature, None)
            raise SwapFailedError(f"Transaction {signature} failed on-chain")
        if status is TxStatus.EXPIRED:
            self.valid_until.pop(signature, None)
            raise SwapExpiredError(f"Transaction {signature} expired without landing")

    async def lookup_status(self, signature: str) -> TxStatus:
        try:
            resp = await self.client.get_signature_statuses(
                [Signature.from_string(signature)], search_transaction_history=True
            )
            result = rpc_result(resp)
        except Exception as e:
            logger.debug("Status lookup failed for {}: {}", signature, e)
            return TxStatus.UNKNOWN
        statuses = (result or {}).get("value") or []
        st = statuses[0] if statuses else None
        if not st:
            if await self._expired(signature):
                return TxStatus.EXPIRED
            return TxStatus.UNKNOWN
        if st.get("err") is not None:
            return TxStatus.FAILED
        if st.get("confirmationStatus") in CONFIRMED_LEVELS:
            return TxStatus.CONFIRMED
        return TxStatus.UNKNOWN

    async def _expired(self, signature: str) -> bool:
        last_valid = self.valid_until.get(signature)
        if last_valid is None:
            return False
        try:
            height = rpc_result(await self.client.get_block_height())
        except Exception as e:
            logger.debug("Block height lookup failed: {}", e)
            return False
        return int(height) > last_valid

    async def latest_valid_height(self) -> int | None:
        try:
            result = rpc_result(await self.client.get_latest_blockhash())
            return int(result["value"]["lastValidBlockHeight"])
        except Exception as e:
            logger.debug("Latest blockhash lookup failed: {}", e)
            return None

    async def realized_output(self, signature: str, route: SwapQuoteRoute) -> int:
        # Fetch confirmed transaction to get realized amounts
        try:
            tr = await self.client.get_transaction(
                Signature.from_string(signature), max_supported_transaction_version=0
            )
            tx = rpc_result(tr) or {}
        except Exception as e:
            logger.debug("Could not fetch {} for realized amounts: {}", signature, e)
            return route.expected_out_amount
        owner = str(self.pubkey)
        delta = token_balance_delta(tx.get("meta") or {}, owner, route.output_mint)
        if (delta is None or delta <= 0) and route.output_mint == NATIVE_MINT:
            # wrapAndUnwrapSol pays SOL out as lamports; the temporary token account is closed
            delta = native_balance_delta(tx, owner)
        if delta is None or delta <= 0:
            return route.expected_out_amount
        return delta

    async def recover(self, signature: str, route: SwapQuoteRoute) -> SwapResult | None:
        """Resolve a timed-out swap by signature. None while it may still land.

        Raises SwapFailedError when it failed on-chain and SwapExpiredError once
        its blockhash has expired without it landing.
        """
        status = await self.lookup_status(signature)
        self._raise_if_final(signature, status)
        if status is TxStatus.UNKNOWN:
            return None
        self.valid_until.pop(signature, None)
        return SwapResult(signature=signature, realized_out_amount=await self.realized_output(signature, route))

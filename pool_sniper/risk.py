from __future__ import annotations

from typing import Any

from loguru import logger
from pydantic import BaseModel, ConfigDict, Field, ValidationError
from solana.rpc.async_api import AsyncClient
from solders.pubkey import Pubkey

from pool_sniper.chains.solana import rpc_result
from pool_sniper.config import AppSettings
from pool_sniper.models import RiskReason, RiskVerdict


class MintInfo(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    # Required but nullable: an absent field is malformed, null means renounced
    mint_authority: str | None = Field(alias="mintAuthority")
    freeze_authority: str | None = Field(alias="freezeAuthority")
    supply: int
    decimals: int


class ParsedData(BaseModel):
    type: str
    info: dict[str, Any]


class ParsedAccountData(BaseModel):
    program: str | None = None
    parsed: ParsedData


def classify_mint(info: MintInfo, lp_threshold: float) -> RiskVerdict:
    if info.mint_authority is not None:
        return RiskVerdict(False, RiskReason.MINT_AUTHORITY, info.decimals)
    if info.freeze_authority is not None:
        return RiskVerdict(False, RiskReason.FREEZE_AUTHORITY, info.decimals)
    if info.supply < lp_threshold:
        return RiskVerdict(False, RiskReason.LOW_SUPPLY, info.decimals)
    return RiskVerdict(True, RiskReason.ACCEPTED, info.decimals)


class RiskFilter:
    def __init__(self, settings: AppSettings, client: AsyncClient):
        self.settings = settings
        self.client = client

    async def check(self, token_mint: str) -> RiskVerdict:
        verdict = await self._check(token_mint)
        if verdict.accepted:
            logger.info("Risk check passed for {}", token_mint)
        else:
            logger.warning("Risk check rejected {}: {}", token_mint, verdict.reason.value)
        return verdict

    async def _check(self, token_mint: str) -> RiskVerdict:
        try:
            resp = await self.client.get_account_info_json_parsed(Pubkey.from_string(token_mint))
            result = rpc_result(resp)
        except Exception as e:
            # Fail closed on any RPC trouble
            logger.debug("Mint lookup failed for {}: {}", token_mint, e)
            return RiskVerdict(False, RiskReason.FETCH_FAILED)

        value = (result or {}).get("value") if isinstance(result, dict) else None
        if not value:
            return RiskVerdict(False, RiskReason.ACCOUNT_MISSING)
        data = value.get("data") if isinstance(value, dict) else None
        if not isinstance(data, dict):
            # Unparsed (base64) data means the RPC does not know this account type
            return RiskVerdict(False, RiskReason.NOT_A_MINT)
        try:
            account = ParsedAccountData.model_validate(data)
            if account.parsed.type != "mint":
                return RiskVerdict(False, RiskReason.NOT_A_MINT)
            info = MintInfo.model_validate(account.parsed.info)
        except ValidationError as e:
            logger.debug("Malformed mint account for {}: {}", token_mint, e)
            return RiskVerdict(False, RiskReason.MALFORMED)
        return classify_mint(info, self.settings.lp_threshold)

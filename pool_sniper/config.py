from __future__ import annotations

import json

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from solders.keypair import Keypair
from solders.pubkey import Pubkey

from pool_sniper.errors import ConfigurationError

WRAPPED_SOL_MINT = "So11111111111111111111111111111111111111112"


class AppSettings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=(".env",), env_prefix="SNIPER_", extra="allow", frozen=True
    )

    # Database
    database_url: str = "sqlite+pysqlite:///sniper.db"

    # Solana
    sol_rpc_url: str = "https://api.mainnet-beta.solana.com"
    sol_ws_url: str | None = None  # derived from sol_rpc_url when unset
    sol_executor_private_key: str | None = None  # base58 or JSON byte array
    sol_executor_pubkey: str | None = None
    raydium_program_id: str = "675kPX9MHTjS2zt1qfr1NYHuzeLXfQM9H24wFSUt1Mp8"

    # Trading
    quote_mint: str = WRAPPED_SOL_MINT
    quote_amount: int = Field(default=10_000_000, gt=0)  # raw units of quote_mint
    quote_decimals: int = Field(default=9, ge=0)
    take_profit: float = 1.25
    stop_loss: float = 0.8
    lp_threshold: float = 1000.0  # minimum raw token supply
    slippage_bps: int = Field(default=100, ge=1, le=5000)  # 1%

    # Aggregator
    jupiter_quote_url: str = "https://quote-api.jup.ag/v6/quote"
    jupiter_swap_url: str = "https://quote-api.jup.ag/v6/swap"
    jupiter_price_url: str = "https://api.jup.ag/price/v2"
    http_timeout_sec: float = 15.0

    # Monitoring
    poll_interval_sec: float = Field(default=10.0, gt=0)
    confirm_timeout_sec: float = Field(default=60.0, gt=0)
    confirm_poll_sec: float = Field(default=1.0, gt=0)
    max_open_positions: int = Field(default=10, ge=1)
    exit_alert_after: int = Field(default=5, ge=1)  # consecutive failed exits before alerting
    reconnect_delay_sec: float = 2.0

    # Ledger collaborator (PostgREST-style RPC endpoint)
    ledger_url: str | None = None
    ledger_api_key: str | None = None
    ledger_rpc: str = "increment_balance"
    ledger_retry_interval_sec: float = 60.0

    # Execution
    dry_run: bool = True

    # Logging
    log_level: str = "INFO"

    # --- Validators to coerce empty strings in optional envs to None ---
    @field_validator(
        "sol_ws_url",
        "sol_executor_private_key",
        "sol_executor_pubkey",
        "ledger_url",
        "ledger_api_key",
        mode="before",
    )
    @classmethod
    def _empty_str_to_none(cls, v):
        if v == "":
            return None
        return v

    @field_validator("raydium_program_id", "quote_mint")
    @classmethod
    def _valid_pubkey(cls, v: str) -> str:
        Pubkey.from_string(v)  # raises ValueError on malformed base58
        return v

    @model_validator(mode="after")
    def _check_thresholds(self):
        if not 0 < self.stop_loss < 1:
            raise ValueError("stop_loss must be between 0 and 1 (exclusive)")
        if self.take_profit <= 1:
            raise ValueError("take_profit must be greater than 1")
        return self

    @property
    def ws_url(self) -> str:
        if self.sol_ws_url:
            return self.sol_ws_url
        return self.sol_rpc_url.replace("https://", "wss://").replace("http://", "ws://")


def load_settings(**overrides) -> AppSettings:
    """Build settings, turning validation problems into a startup error."""
    try:
        return AppSettings(**overrides)
    except ValueError as e:
        raise ConfigurationError(f"Invalid configuration: {e}") from e


def load_keypair(settings: AppSettings) -> tuple[Keypair | None, Pubkey | None]:
    kp = None
    pk = None
    raw = (settings.sol_executor_private_key or "").strip()
    if raw:
        try:
            if raw.startswith("["):
                secret = bytes(json.loads(raw))
            else:
                import base58

                secret = base58.b58decode(raw)
            kp = Keypair.from_bytes(secret)
        except Exception as e:
            # Never echo the key material itself
            raise ConfigurationError(f"Malformed executor private key: {type(e).__name__}") from e
        pk = kp.pubkey()
    elif settings.sol_executor_pubkey:
        try:
            pk = Pubkey.from_string(settings.sol_executor_pubkey)
        except ValueError as e:
            raise ConfigurationError(f"Malformed executor pubkey: {e}") from e
    if kp is None and not settings.dry_run:
        raise ConfigurationError("SNIPER_SOL_EXECUTOR_PRIVATE_KEY is required when dry_run is off")
    return kp, pk

from __future__ import annotations

import json
from typing import Any

from solana.rpc.async_api import AsyncClient
from solana.rpc.commitment import Confirmed

from pool_sniper.config import AppSettings


def make_client(settings: AppSettings) -> AsyncClient:
    return AsyncClient(settings.sol_rpc_url, commitment=Confirmed, timeout=settings.http_timeout_sec)


def rpc_result(resp) -> Any:
    """solders RPC responses all serialize to the JSON-RPC envelope; return its `result`."""
    body = json.loads(resp.to_json())
    if isinstance(body, dict) and "result" in body:
        return body["result"]
    return body

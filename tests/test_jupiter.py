from __future__ import annotations

from typing import Any

import pytest

USDC = "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v"
WSOL = "So11111111111111111111111111111111111111112"


class FakeResp:
    def __init__(self, payload: Any, status_code: int = 200):
        self._payload = payload
        self.status_code = status_code
        self.ok = status_code < 400
        self.text = str(payload)
        self.url = "https://quote.test"

    def json(self):
        return self._payload

    def raise_for_status(self):
        if not self.ok:
            import requests

            raise requests.HTTPError(f"HTTP {self.status_code}")


def test_quote_returns_first_route_from_list(monkeypatch):
    from pool_sniper.aggregators.jupiter import get_quote

    calls = []

    def fake_get(url, params=None, timeout=None):
        calls.append(params)
        return FakeResp(
            {
                "data": [
                    {"inAmount": "1000", "outAmount": "5000", "marketInfos": []},
                    {"inAmount": "1000", "outAmount": "4000"},
                ]
            }
        )

    monkeypatch.setattr("requests.get", fake_get)
    route = get_quote("https://quote.test", WSOL, USDC, 1000, 100)
    assert route is not None
    assert route.expected_out_amount == 5000
    assert route.input_mint == WSOL and route.output_mint == USDC
    assert route.descriptor["marketInfos"] == []
    assert calls[0]["slippageBps"] == "100"
    assert calls[0]["amount"] == "1000"


def test_quote_accepts_single_v6_quote(monkeypatch):
    from pool_sniper.aggregators.jupiter import get_quote

    payload = {"inputMint": WSOL, "outputMint": USDC, "inAmount": "10", "outAmount": "42", "routePlan": []}
    monkeypatch.setattr("requests.get", lambda url, params=None, timeout=None: FakeResp(payload))
    route = get_quote("https://quote.test", WSOL, USDC, 10, 100)
    assert route.expected_out_amount == 42
    assert route.descriptor is payload


def test_quote_empty_and_no_route_error_mean_none(monkeypatch):
    from pool_sniper.aggregators.jupiter import get_quote

    monkeypatch.setattr("requests.get", lambda url, params=None, timeout=None: FakeResp({"data": []}))
    assert get_quote("https://quote.test", WSOL, USDC, 10, 100) is None

    err = {"error": "Could not find any route", "errorCode": "COULD_NOT_FIND_ANY_ROUTE"}
    monkeypatch.setattr("requests.get", lambda url, params=None, timeout=None: FakeResp(err, 400))
    assert get_quote("https://quote.test", WSOL, USDC, 10, 100) is None


def test_quote_errors_are_typed(monkeypatch):
    import requests

    from pool_sniper.aggregators.jupiter import get_quote
    from pool_sniper.errors import ParseError, TransientNetworkError

    monkeypatch.setattr(
        "requests.get", lambda url, params=None, timeout=None: FakeResp({"data": [{"outAmount": "x"}]})
    )
    with pytest.raises(ParseError):
        get_quote("https://quote.test", WSOL, USDC, 10, 100)

    monkeypatch.setattr("requests.get", lambda url, params=None, timeout=None: FakeResp({}, 502))
    with pytest.raises(TransientNetworkError):
        get_quote("https://quote.test", WSOL, USDC, 10, 100)

    def boom(url, params=None, timeout=None):
        raise requests.ConnectionError("down")

    monkeypatch.setattr("requests.get", boom)
    with pytest.raises(TransientNetworkError):
        get_quote("https://quote.test", WSOL, USDC, 10, 100)


def test_swap_transaction_missing_is_build_error(monkeypatch):
    from pool_sniper.aggregators.jupiter import get_swap_transaction
    from pool_sniper.errors import SwapBuildError
    from pool_sniper.models import SwapQuoteRoute

    sent = {}

    def fake_post(url, json=None, timeout=None):
        sent.update(json)
        return FakeResp({"swapTransaction": None})

    monkeypatch.setattr("requests.post", fake_post)
    route = SwapQuoteRoute(WSOL, USDC, 10, 42, {"outAmount": "42"})
    with pytest.raises(SwapBuildError):
        get_swap_transaction("https://swap.test", route, "wallet")
    assert sent["quoteResponse"] == {"outAmount": "42"}
    assert sent["userPublicKey"] == "wallet"
    assert sent["wrapAndUnwrapSol"] is True

    built_body = {"swapTransaction": "AQID", "lastValidBlockHeight": 2500}
    monkeypatch.setattr("requests.post", lambda url, json=None, timeout=None: FakeResp(built_body))
    built = get_swap_transaction("https://swap.test", route, "wallet")
    assert built.swap_transaction == "AQID"
    assert built.last_valid_block_height == 2500


def test_price_parsing(monkeypatch):
    from pool_sniper.aggregators.jupiter import get_price
    from pool_sniper.errors import ParseError

    seen = {}

    def fake_get(url, params=None, timeout=None):
        seen.update(params)
        return FakeResp({"data": {USDC: {"id": USDC, "price": "0.65"}}})

    monkeypatch.setattr("requests.get", fake_get)
    assert get_price("https://price.test", USDC, WSOL) == pytest.approx(0.65)
    assert seen == {"ids": USDC, "vsToken": WSOL}

    # Unknown token: legitimately no data
    monkeypatch.setattr("requests.get", lambda url, params=None, timeout=None: FakeResp({"data": {USDC: None}}))
    assert get_price("https://price.test", USDC) is None

    monkeypatch.setattr("requests.get", lambda url, params=None, timeout=None: FakeResp({"data": ["nope"]}))
    with pytest.raises(ParseError):
        get_price("https://price.test", USDC)

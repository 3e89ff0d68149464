from __future__ import annotations

import asyncio
from types import SimpleNamespace

USDC = "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v"
USDT = "Es9vMFrzaCERmJfrF4H2FYxTea7PhYRYrRyYLfnLKz7j"


def notification(logs, signature="sig", err=None):
    return SimpleNamespace(result=SimpleNamespace(value=SimpleNamespace(signature=signature, err=err, logs=logs)))


def test_extract_first_matching_line_wins():
    from pool_sniper.chains.pool_listener import extract_token_from_logs

    logs = ["Program log: initialize2", f"Program log: mint: {USDC}", f"Program log: mint: {USDT}"]
    assert extract_token_from_logs(logs) == USDC
    assert extract_token_from_logs([f"Program log: MINT {USDT}"]) == USDT
    assert extract_token_from_logs(["Program log: nothing here"]) is None
    # "MintTo" is the first match and its capture is not a pubkey: the event is dropped
    assert extract_token_from_logs(["Program log: Instruction: MintTo", f"mint: {USDC}"]) is None


def test_handle_message_skips_acks_errors_and_malformed():
    from pool_sniper.chains.pool_listener import PoolEventListener
    from pool_sniper.config import AppSettings

    listener = PoolEventListener(AppSettings())
    assert listener.handle_message(SimpleNamespace(result=7)) is None
    assert listener.handle_message(SimpleNamespace(result=None)) is None
    assert listener.handle_message(notification([1, 2, 3])) is None
    assert listener.handle_message(notification([f"mint: {USDC}"], err={"InstructionError": [0, "x"]})) is None

    event = listener.handle_message(notification([f"mint: {USDC}"], signature="abc"))
    assert event.token_mint == USDC
    assert event.signature == "abc"
    assert event.raw_log_lines == (f"mint: {USDC}",)


class FakeWebsocket:
    def __init__(self, batches):
        self.batches = list(batches)
        self.subscriptions = []

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False

    async def logs_subscribe(self, filter_=None, commitment=None):
        self.subscriptions.append(filter_)

    async def recv(self):
        await asyncio.sleep(0)
        item = self.batches.pop(0)
        if isinstance(item, Exception):
            raise item
        return item


def test_events_survive_bad_messages_and_reconnect():
    from pool_sniper.chains.pool_listener import PoolEventListener
    from pool_sniper.config import AppSettings

    sockets = [
        FakeWebsocket(
            [
                [SimpleNamespace(result=1)],
                [notification(["garbage"]), SimpleNamespace(result="weird"), notification([f"mint: {USDC}"])],
                ConnectionError("socket dropped"),
            ]
        ),
        FakeWebsocket([[notification([f"mint: {USDT}"])]]),
    ]
    urls = []

    def fake_connect(url):
        urls.append(url)
        return sockets[len(urls) - 1]

    settings = AppSettings(sol_rpc_url="https://rpc.test", reconnect_delay_sec=0.01)
    listener = PoolEventListener(settings, connect=fake_connect)

    async def collect():
        shutdown = asyncio.Event()
        got = []
        gen = listener.events(shutdown)
        async for event in gen:
            got.append(event.token_mint)
            if len(got) == 2:
                shutdown.set()
                break
        await gen.aclose()
        return got

    got = asyncio.run(collect())
    assert got == [USDC, USDT]
    assert urls == ["wss://rpc.test", "wss://rpc.test"]
    assert len(sockets[0].subscriptions) == 1

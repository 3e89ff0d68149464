import json

import pytest
from fastapi.testclient import TestClient


def test_empty_env_coercion(monkeypatch):
    from pool_sniper.config import AppSettings

    monkeypatch.setenv("SNIPER_SOL_EXECUTOR_PRIVATE_KEY", "")
    monkeypatch.setenv("SNIPER_LEDGER_URL", "")
    s = AppSettings()
    assert s.sol_executor_private_key is None
    assert s.ledger_url is None


def test_settings_are_frozen():
    from pydantic import ValidationError

    from pool_sniper.config import AppSettings

    s = AppSettings()
    with pytest.raises(ValidationError):
        s.take_profit = 2.0


@pytest.mark.parametrize(
    "overrides",
    [
        {"stop_loss": 1.0},
        {"take_profit": 1.0},
        {"slippage_bps": 0},
        {"slippage_bps": 9000},
        {"quote_amount": 0},
        {"raydium_program_id": "not-a-pubkey"},
    ],
)
def test_invalid_settings_are_configuration_errors(overrides):
    from pool_sniper.config import load_settings
    from pool_sniper.errors import ConfigurationError

    with pytest.raises(ConfigurationError):
        load_settings(**overrides)


def test_load_keypair_formats():
    import base58
    from solders.keypair import Keypair

    from pool_sniper.config import AppSettings, load_keypair
    from pool_sniper.errors import ConfigurationError

    kp = Keypair()
    b58 = base58.b58encode(bytes(kp)).decode()
    _, pk = load_keypair(AppSettings(sol_executor_private_key=b58))
    assert pk == kp.pubkey()

    as_json = json.dumps(list(bytes(kp)))
    got, pk = load_keypair(AppSettings(sol_executor_private_key=as_json, dry_run=False))
    assert got.pubkey() == kp.pubkey()

    # Watch-only pubkey is enough for dry run
    got, pk = load_keypair(AppSettings(sol_executor_pubkey=str(kp.pubkey())))
    assert got is None and pk == kp.pubkey()

    with pytest.raises(ConfigurationError):
        load_keypair(AppSettings(sol_executor_private_key="[1, 2, 3]"))
    with pytest.raises(ConfigurationError):
        load_keypair(AppSettings(dry_run=False))


def test_api_endpoints_with_sqlite(tmp_path, monkeypatch):
    # Use a file-based sqlite for persistence across connections
    db_path = tmp_path / "sniper.db"
    db_url = f"sqlite+pysqlite:///{db_path}"
    monkeypatch.setenv("SNIPER_DATABASE_URL", db_url)

    # Import after setting env so the module picks it up
    from services.api.main import app, settings
    from pool_sniper.db import Base, PositionRecord, make_engine, make_session_factory, session_scope

    engine = make_engine(settings.database_url)
    Base.metadata.create_all(engine)
    SessionFactory = make_session_factory(settings.database_url)

    with session_scope(SessionFactory) as s:
        s.add(
            PositionRecord(
                token_mint="EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v",
                state="closed",
                entry_amount_in="100",
                entry_amount_out="200",
                entry_price=0.5,
                exit_amount_out="130",
                profit=30,
            )
        )
        s.add(
            PositionRecord(
                token_mint="Es9vMFrzaCERmJfrF4H2FYxTea7PhYRYrRyYLfnLKz7j",
                state="holding",
                entry_amount_in="100",
                entry_amount_out="50",
                entry_price=2.0,
            )
        )

    client = TestClient(app)
    r = client.get("/health")
    assert r.status_code == 200
    r = client.get("/positions")
    assert r.status_code == 200
    assert len(r.json()) >= 2
    r = client.get("/positions", params={"state": "holding"})
    assert all(p["state"] == "holding" for p in r.json())
    r = client.get("/summary")
    assert r.status_code == 200
    data = r.json()
    assert data["closed"] >= 1
    assert data["realized_profit"] >= 30

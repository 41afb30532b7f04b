import fakeredis
import pytest

from Loot_Ledger.loot_server import db


@pytest.fixture(autouse=True)
def api_engine(clock):
    """Point the API's db holder at an in-memory ledger for each test."""
    r = fakeredis.FakeRedis()
    engine = db.init_engine(r, "USDC", clock=clock)
    yield engine
    r.flushdb()
    db.close_engine()

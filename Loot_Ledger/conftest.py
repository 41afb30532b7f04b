import fakeredis
import nacl.signing
import pytest

from Loot_Ledger.loot_shared.hash_tree import build_root, inventory_leaf
from Loot_Ledger.loot_shared.signing import oracle_identity
from Loot_Ledger.loot_shared.types import BatchItem
from Loot_Ledger.loot_db.collaborators import AssetRegistry, FundsLedger
from Loot_Ledger.loot_db.ledger import LedgerStore
from Loot_Ledger.loot_engine.lifecycle import LifecycleEngine

START_TIME = 1_700_000_000
TREASURY_SEED = 10_000 * 1_000_000


class FakeClock:
    def __init__(self, now: int = START_TIME):
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, seconds: int) -> None:
        self.now += seconds


@pytest.fixture
def ledger_client():
    r = fakeredis.FakeRedis()
    yield r
    r.flushdb()
    r.close()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def ledger(ledger_client, clock):
    return LedgerStore(ledger_client, clock=clock)


@pytest.fixture
def funds():
    return FundsLedger("USDC")


@pytest.fixture
def assets():
    return AssetRegistry()


@pytest.fixture
def authority():
    return "authority"


@pytest.fixture
def oracle_key():
    return nacl.signing.SigningKey(bytes(range(32)))


@pytest.fixture
def oracle_id(oracle_key):
    return oracle_identity(oracle_key)


@pytest.fixture
def randomness():
    return bytes([7]) * 32


@pytest.fixture
def engine(ledger, funds, assets):
    return LifecycleEngine(ledger, funds, assets)


@pytest.fixture
def fund(ledger, funds):
    """Faucet: credit ``amount`` of the settlement asset to ``account``."""
    def _fund(account, amount):
        return ledger.run(lambda uow: funds.mint_funds(uow, account, amount), "mint_funds")
    return _fund


@pytest.fixture
def ready_engine(engine, authority, oracle_id, fund):
    engine.initialize(authority, oracle_id, "USDC")
    fund("depositor", TREASURY_SEED)
    engine.deposit_treasury("depositor", TREASURY_SEED)
    return engine


@pytest.fixture
def catalog():
    return [
        BatchItem(inventory_id=f"SKU-{i:03d}", name=f"Item {i}", uri=f"https://items.example/{i}.json")
        for i in range(5)
    ]


@pytest.fixture
def catalog_leaves(catalog):
    return [inventory_leaf(item.inventory_id, item.uri) for item in catalog]


@pytest.fixture
def assign_batch(ready_engine, authority, catalog_leaves, clock):
    return ready_engine.publish_batch(
        authority, 1, build_root(catalog_leaves), clock.now, len(catalog_leaves), "MERKLE_ASSIGN",
    )


@pytest.fixture
def direct_batch(ready_engine, authority, catalog, catalog_leaves, clock):
    return ready_engine.publish_batch(
        authority, 2, build_root(catalog_leaves), clock.now, len(catalog), "DIRECT_REVEAL", catalog,
    )


@pytest.fixture
def reveal_box(ready_engine, authority, randomness):
    """Mint, open, fulfil and reveal a box for ``owner`` in ``batch``."""
    def _reveal(owner, batch):
        box = ready_engine.mint_box(owner, batch.batch_id, "https://boxes.example/box.json")
        pending = ready_engine.open_box(owner, box.asset_id, batch.total_items)
        ready_engine.fulfill_randomness(authority, box.asset_id, pending.request_id, randomness)
        return ready_engine.reveal(owner, box.asset_id)
    return _reveal


@pytest.fixture
def revealed_box(reveal_box, assign_batch):
    return reveal_box("alice", assign_batch)

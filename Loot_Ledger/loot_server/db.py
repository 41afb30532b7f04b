from typing import Callable, Optional

import redis

from Loot_Ledger.loot_db import connection
from Loot_Ledger.loot_db.collaborators import AssetRegistry, FundsLedger
from Loot_Ledger.loot_db.ledger import LedgerStore
from Loot_Ledger.loot_db.stats import LedgerReporter
from Loot_Ledger.loot_engine.lifecycle import LifecycleEngine

client: redis.Redis = None
engine: LifecycleEngine = None
reporter: LedgerReporter = None


def init_engine(redis_client: redis.Redis, settlement_asset: str,
                clock: Optional[Callable[[], int]] = None) -> LifecycleEngine:
    global client, engine, reporter
    ledger = LedgerStore(redis_client, clock=clock)
    funds = FundsLedger(settlement_asset)

    client = redis_client
    engine = LifecycleEngine(ledger, funds, AssetRegistry())
    reporter = LedgerReporter(ledger, funds)
    return engine


def create_engine(url: str, settlement_asset: str) -> LifecycleEngine:
    if engine is not None:
        return engine
    return init_engine(connection.create_ledger_client_from_url(url), settlement_asset)


def close_engine() -> None:
    global client, engine, reporter
    if client is not None:
        connection.close(client)
    client = None
    engine = None
    reporter = None


def health_check() -> bool:
    if client is None:
        return False
    return connection.health_check(client)

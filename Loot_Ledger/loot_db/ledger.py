"""
Address-keyed record store on Redis with all-or-nothing units of work.

Every record lives in a Redis hash whose key is derived from a fixed label and
a discriminant:

    ledger:v1:{label}:{hex(keccak(label || discriminant))}

A lifecycle operation runs as ``LedgerStore.run(operation, name)``:

    1. every read WATCHes its key
    2. writes are staged locally (later reads in the same unit see them)
    3. commit replays the staged writes inside MULTI/EXEC

If any watched key changed underneath us, EXEC fails and the operation is run
again from scratch; if the operation raises, nothing staged is ever sent.
Create-if-absent therefore needs no extra locking: the loser of a creation
race is re-run, finds the record, and fails cleanly.
"""

import json
import logging
import time
from dataclasses import asdict
from typing import Callable, Iterator, Optional, TypeVar

import redis

from Loot_Ledger.loot_shared import config, errors
from Loot_Ledger.loot_shared.hash_tree import keccak256
from Loot_Ledger.loot_shared.types import (
    Batch,
    BatchItem,
    BoxState,
    GlobalConfig,
    InventoryAssignment,
    PriceStore,
    VrfPending,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


# ─── Address derivation ───

def derive_address(label: str, discriminant: bytes) -> bytes:
    return keccak256(label.encode() + discriminant)


def record_key(label: str, discriminant: bytes) -> str:
    return f"{config.LEDGER_KEY_PREFIX}:{label}:{derive_address(label, discriminant).hex()}"


def global_key() -> str:
    return record_key(config.GLOBAL_LABEL, b"")


def batch_key(batch_id: int) -> str:
    return record_key(config.BATCH_LABEL, batch_id.to_bytes(8, "little"))


def box_key(asset_id: str) -> str:
    return record_key(config.BOX_LABEL, asset_id.encode())


def pending_key(asset_id: str) -> str:
    return record_key(config.VRF_PENDING_LABEL, asset_id.encode())


def assignment_key(inventory_hash: bytes) -> str:
    return record_key(config.INVENTORY_LABEL, inventory_hash)


def price_key(inventory_hash: bytes) -> str:
    return record_key(config.PRICE_LABEL, inventory_hash)


def label_pattern(label: str) -> str:
    return f"{config.LEDGER_KEY_PREFIX}:{label}:*"


def treasury_account() -> str:
    """Funds account of the pooled treasury (owned by the global config)."""
    return f"{config.TREASURY_LABEL}:{derive_address(config.TREASURY_LABEL, b'').hex()}"


# ─── Record codecs ───

def _flag(value: bool) -> str:
    return "1" if value else "0"


def _encode_mapping(mapping: dict) -> dict[bytes, bytes]:
    encoded = {}
    for name, value in mapping.items():
        if isinstance(value, bytes):
            encoded[name.encode()] = value
        else:
            encoded[name.encode()] = str(value).encode()
    return encoded


def _serialize_global(g: GlobalConfig) -> dict:
    return {
        "authority": g.authority,
        "oracle": g.oracle,
        "settlement_asset": g.settlement_asset,
        "buyback_enabled": _flag(g.buyback_enabled),
        "paused": _flag(g.paused),
        "min_treasury_balance": str(g.min_treasury_balance),
        "current_batch": str(g.current_batch),
        "total_boxes_minted": str(g.total_boxes_minted),
        "total_buybacks": str(g.total_buybacks),
        "total_buyback_volume": str(g.total_buyback_volume),
        "pending_authority": g.pending_authority or "",
        "pricing_mode": g.pricing_mode,
    }


def _deserialize_global(data: dict[bytes, bytes]) -> GlobalConfig:
    pending = data[b"pending_authority"].decode()
    return GlobalConfig(
        authority=data[b"authority"].decode(),
        oracle=data[b"oracle"].decode(),
        settlement_asset=data[b"settlement_asset"].decode(),
        buyback_enabled=data[b"buyback_enabled"] == b"1",
        paused=data[b"paused"] == b"1",
        min_treasury_balance=int(data[b"min_treasury_balance"]),
        current_batch=int(data[b"current_batch"]),
        total_boxes_minted=int(data[b"total_boxes_minted"]),
        total_buybacks=int(data[b"total_buybacks"]),
        total_buyback_volume=int(data[b"total_buyback_volume"]),
        pending_authority=pending or None,
        pricing_mode=data.get(b"pricing_mode", b"ORACLE").decode(),
    )


def _serialize_batch(b: Batch) -> dict:
    return {
        "batch_id": str(b.batch_id),
        "merkle_root": b.merkle_root,
        "snapshot_time": str(b.snapshot_time),
        "total_items": str(b.total_items),
        "boxes_minted": str(b.boxes_minted),
        "boxes_opened": str(b.boxes_opened),
        "claim_strategy": b.claim_strategy,
        "items": json.dumps([asdict(item) for item in b.items]),
    }


def _deserialize_batch(data: dict[bytes, bytes]) -> Batch:
    return Batch(
        batch_id=int(data[b"batch_id"]),
        merkle_root=data[b"merkle_root"],
        snapshot_time=int(data[b"snapshot_time"]),
        total_items=int(data[b"total_items"]),
        boxes_minted=int(data[b"boxes_minted"]),
        boxes_opened=int(data[b"boxes_opened"]),
        claim_strategy=data[b"claim_strategy"].decode(),
        items=[BatchItem(**item) for item in json.loads(data[b"items"])],
    )


def _serialize_box(b: BoxState) -> dict:
    return {
        "asset_id": b.asset_id,
        "owner": b.owner,
        "batch_id": str(b.batch_id),
        "opened": _flag(b.opened),
        "assigned_inventory": b.assigned_inventory,
        "mint_time": str(b.mint_time),
        "open_time": str(b.open_time),
        "random_index": str(b.random_index),
        "redeemed": _flag(b.redeemed),
        "redeem_time": str(b.redeem_time),
        "item_leaf": b.item_leaf,
        "claimed_asset": b.claimed_asset or "",
    }


def _deserialize_box(data: dict[bytes, bytes]) -> BoxState:
    claimed = data[b"claimed_asset"].decode()
    return BoxState(
        asset_id=data[b"asset_id"].decode(),
        owner=data[b"owner"].decode(),
        batch_id=int(data[b"batch_id"]),
        opened=data[b"opened"] == b"1",
        assigned_inventory=data[b"assigned_inventory"],
        mint_time=int(data[b"mint_time"]),
        open_time=int(data[b"open_time"]),
        random_index=int(data[b"random_index"]),
        redeemed=data[b"redeemed"] == b"1",
        redeem_time=int(data[b"redeem_time"]),
        item_leaf=data[b"item_leaf"],
        claimed_asset=claimed or None,
    )


def _serialize_pending(p: VrfPending) -> dict:
    return {
        "asset_id": p.asset_id,
        "requester": p.requester,
        "request_id": str(p.request_id),
        "request_time": str(p.request_time),
        "pool_size": str(p.pool_size),
        "randomness": p.randomness,
    }


def _deserialize_pending(data: dict[bytes, bytes]) -> VrfPending:
    return VrfPending(
        asset_id=data[b"asset_id"].decode(),
        requester=data[b"requester"].decode(),
        request_id=int(data[b"request_id"]),
        request_time=int(data[b"request_time"]),
        pool_size=int(data[b"pool_size"]),
        randomness=data[b"randomness"],
    )


def _serialize_assignment(a: InventoryAssignment) -> dict:
    return {
        "inventory_id_hash": a.inventory_id_hash,
        "asset_id": a.asset_id,
        "batch_id": str(a.batch_id),
        "assigned_at": str(a.assigned_at),
    }


def _deserialize_assignment(data: dict[bytes, bytes]) -> InventoryAssignment:
    return InventoryAssignment(
        inventory_id_hash=data[b"inventory_id_hash"],
        asset_id=data[b"asset_id"].decode(),
        batch_id=int(data[b"batch_id"]),
        assigned_at=int(data[b"assigned_at"]),
    )


def _serialize_price(p: PriceStore) -> dict:
    return {
        "inventory_id_hash": p.inventory_id_hash,
        "price": str(p.price),
        "timestamp": str(p.timestamp),
        "oracle": p.oracle,
        "update_count": str(p.update_count),
    }


def _deserialize_price(data: dict[bytes, bytes]) -> PriceStore:
    return PriceStore(
        inventory_id_hash=data[b"inventory_id_hash"],
        price=int(data[b"price"]),
        timestamp=int(data[b"timestamp"]),
        oracle=data[b"oracle"].decode(),
        update_count=int(data[b"update_count"]),
    )


# ─── Unit of work ───

class UnitOfWork:
    def __init__(self, pipe: redis.client.Pipeline, now: int):
        self._pipe = pipe
        self._cache: dict[str, Optional[dict[bytes, bytes]]] = {}
        self._staged: dict[str, Optional[dict[bytes, bytes]]] = {}
        self.now = now

    # generic record access

    def load(self, key: str) -> Optional[dict[bytes, bytes]]:
        if key in self._cache:
            return self._cache[key]
        self._pipe.watch(key)
        data = self._pipe.hgetall(key)
        self._cache[key] = data or None
        return self._cache[key]

    def exists(self, key: str) -> bool:
        return self.load(key) is not None

    def put(self, key: str, mapping: dict) -> None:
        encoded = _encode_mapping(mapping)
        self._cache[key] = encoded
        self._staged[key] = encoded

    def create(self, key: str, mapping: dict, on_exists: Callable[[], Exception]) -> None:
        if self.exists(key):
            raise on_exists()
        self.put(key, mapping)

    def delete(self, key: str) -> None:
        self.load(key)
        self._cache[key] = None
        self._staged[key] = None

    def commit(self) -> None:
        self._pipe.multi()
        for key, mapping in self._staged.items():
            if mapping is None:
                self._pipe.delete(key)
            else:
                self._pipe.delete(key)
                self._pipe.hset(key, mapping=mapping)
        self._pipe.execute()

    # typed records

    def get_global(self) -> Optional[GlobalConfig]:
        data = self.load(global_key())
        return _deserialize_global(data) if data else None

    def require_global(self) -> GlobalConfig:
        g = self.get_global()
        if g is None:
            raise errors.NotInitializedError()
        return g

    def create_global(self, g: GlobalConfig) -> None:
        self.create(global_key(), _serialize_global(g), errors.AlreadyInitializedError)

    def put_global(self, g: GlobalConfig) -> None:
        self.put(global_key(), _serialize_global(g))

    def get_batch(self, batch_id: int) -> Optional[Batch]:
        data = self.load(batch_key(batch_id))
        return _deserialize_batch(data) if data else None

    def require_batch(self, batch_id: int) -> Batch:
        batch = self.get_batch(batch_id)
        if batch is None:
            raise errors.InvalidBatchIdError(batch_id, "batch not published")
        return batch

    def put_batch(self, b: Batch) -> None:
        self.put(batch_key(b.batch_id), _serialize_batch(b))

    def get_box(self, asset_id: str) -> Optional[BoxState]:
        data = self.load(box_key(asset_id))
        return _deserialize_box(data) if data else None

    def require_box(self, asset_id: str) -> BoxState:
        box = self.get_box(asset_id)
        if box is None:
            raise errors.RecordNotFoundError("Box", asset_id)
        return box

    def create_box(self, b: BoxState) -> None:
        self.create(box_key(b.asset_id), _serialize_box(b),
                    lambda: errors.BoxAlreadyExistsError(b.asset_id))

    def put_box(self, b: BoxState) -> None:
        self.put(box_key(b.asset_id), _serialize_box(b))

    def get_pending(self, asset_id: str) -> Optional[VrfPending]:
        data = self.load(pending_key(asset_id))
        return _deserialize_pending(data) if data else None

    def create_pending(self, p: VrfPending) -> None:
        self.create(pending_key(p.asset_id), _serialize_pending(p),
                    lambda: errors.OpenAlreadyRequestedError(p.asset_id))

    def put_pending(self, p: VrfPending) -> None:
        self.put(pending_key(p.asset_id), _serialize_pending(p))

    def delete_pending(self, asset_id: str) -> None:
        self.delete(pending_key(asset_id))

    def get_assignment(self, inventory_hash: bytes) -> Optional[InventoryAssignment]:
        data = self.load(assignment_key(inventory_hash))
        return _deserialize_assignment(data) if data else None

    def create_assignment(self, a: InventoryAssignment) -> None:
        self.create(assignment_key(a.inventory_id_hash), _serialize_assignment(a),
                    lambda: errors.InventoryAlreadyAssignedError(a.inventory_id_hash.hex()))

    def get_price(self, inventory_hash: bytes) -> Optional[PriceStore]:
        data = self.load(price_key(inventory_hash))
        return _deserialize_price(data) if data else None

    def put_price(self, p: PriceStore) -> None:
        self.put(price_key(p.inventory_id_hash), _serialize_price(p))


# ─── Store ───

class LedgerStore:
    def __init__(self, client: redis.Redis, clock: Optional[Callable[[], int]] = None):
        self.db: redis.Redis = client
        self.clock = clock or (lambda: int(time.time()))

    def run(self, operation: Callable[[UnitOfWork], T], name: str) -> T:
        """Run ``operation`` as one atomic unit, re-running it on write conflicts."""
        for attempt in range(config.LEDGER_OPTIMISTIC_LOCK_RETRIES):
            pipe = self.db.pipeline(transaction=True)
            try:
                uow = UnitOfWork(pipe, self.clock())
                result = operation(uow)
                uow.commit()
                return result
            except redis.WatchError:
                logger.warning("%s: write conflict, retrying (attempt %d)", name, attempt + 1)
                continue
            except redis.exceptions.ConnectionError:
                raise errors.LedgerUnavailableError(name)
            finally:
                pipe.reset()

        raise errors.ConcurrencyError(name)

    def _read(self, key: str, decode: Callable[[dict], T], name: str) -> Optional[T]:
        try:
            data = self.db.hgetall(key)
        except redis.exceptions.ConnectionError:
            raise errors.LedgerUnavailableError(name)
        return decode(data) if data else None

    def _scan(self, label: str, decode: Callable[[dict], T], name: str) -> Iterator[T]:
        try:
            cursor = 0
            while True:
                cursor, keys = self.db.scan(cursor=cursor, match=label_pattern(label),
                                            count=config.LEDGER_SCAN_COUNT)
                for key in keys:
                    data = self.db.hgetall(key)
                    if data:
                        yield decode(data)
                if cursor == 0:
                    break
        except redis.exceptions.ConnectionError:
            raise errors.LedgerUnavailableError(name)

    # ─── Read-only queries ───

    def get_global(self) -> Optional[GlobalConfig]:
        return self._read(global_key(), _deserialize_global, "get_global")

    def get_batch(self, batch_id: int) -> Optional[Batch]:
        return self._read(batch_key(batch_id), _deserialize_batch, "get_batch")

    def get_box(self, asset_id: str) -> Optional[BoxState]:
        return self._read(box_key(asset_id), _deserialize_box, "get_box")

    def get_pending(self, asset_id: str) -> Optional[VrfPending]:
        return self._read(pending_key(asset_id), _deserialize_pending, "get_pending")

    def get_assignment(self, inventory_hash: bytes) -> Optional[InventoryAssignment]:
        return self._read(assignment_key(inventory_hash), _deserialize_assignment, "get_assignment")

    def get_price(self, inventory_hash: bytes) -> Optional[PriceStore]:
        return self._read(price_key(inventory_hash), _deserialize_price, "get_price")

    def iter_batches(self) -> Iterator[Batch]:
        return self._scan(config.BATCH_LABEL, _deserialize_batch, "iter_batches")

    def iter_boxes(self) -> Iterator[BoxState]:
        return self._scan(config.BOX_LABEL, _deserialize_box, "iter_boxes")

    def iter_pending(self) -> Iterator[VrfPending]:
        return self._scan(config.VRF_PENDING_LABEL, _deserialize_pending, "iter_pending")

    def count_records(self, label: str) -> int:
        try:
            count = 0
            cursor = 0
            while True:
                cursor, keys = self.db.scan(cursor=cursor, match=label_pattern(label),
                                            count=config.LEDGER_SCAN_COUNT)
                count += len(keys)
                if cursor == 0:
                    break
            return count
        except redis.exceptions.ConnectionError:
            raise errors.LedgerUnavailableError("count_records")

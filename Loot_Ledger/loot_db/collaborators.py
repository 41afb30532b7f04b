"""
Reference implementations of the services the lifecycle engine calls out to:
settlement-asset transfers and collectible mint/burn.

Both stage their writes into the caller's UnitOfWork, so a failure anywhere in
a lifecycle operation (theirs or the engine's) leaves no trace. A production
deployment swaps these for adapters to the real token/asset programs; the
engine only depends on the method signatures.
"""

import uuid
from typing import Optional

from Loot_Ledger.loot_shared import config, errors
from Loot_Ledger.loot_shared.types import AssetRecord
from Loot_Ledger.loot_db.ledger import UnitOfWork


class FundsLedger:
    def __init__(self, asset: str):
        self.asset = asset

    def _account_key(self, account: str) -> str:
        return f"{config.FUNDS_KEY_PREFIX}:{self.asset}:{account}"

    def balance_of(self, uow: UnitOfWork, account: str) -> int:
        data = uow.load(self._account_key(account))
        if data is None:
            return 0
        return int(data[b"balance"])

    def _set_balance(self, uow: UnitOfWork, account: str, balance: int) -> None:
        uow.put(self._account_key(account), {"account": account, "balance": str(balance)})

    def mint_funds(self, uow: UnitOfWork, account: str, amount: int) -> int:
        if amount < 0:
            raise errors.InvalidAmountError(amount, "mint_funds")
        balance = self.balance_of(uow, account) + amount
        if balance > config.U64_MAX:
            raise errors.ArithmeticOverflowError("mint_funds")
        self._set_balance(uow, account, balance)
        return balance

    def transfer_funds(self, uow: UnitOfWork, src: str, dst: str, amount: int) -> None:
        if amount < 0:
            raise errors.InvalidAmountError(amount, "transfer_funds")
        src_balance = self.balance_of(uow, src)
        if src_balance < amount:
            raise errors.InsufficientFundsError(src, src_balance, amount)
        if src == dst:
            return

        dst_balance = self.balance_of(uow, dst) + amount
        if dst_balance > config.U64_MAX:
            raise errors.ArithmeticOverflowError("transfer_funds")
        self._set_balance(uow, src, src_balance - amount)
        self._set_balance(uow, dst, dst_balance)


class AssetRegistry:
    def _asset_key(self, asset_id: str) -> str:
        return f"{config.ASSET_KEY_PREFIX}:{asset_id}"

    def _validate_metadata(self, name: str, uri: str) -> None:
        if not name or len(name) > config.MAX_ITEM_NAME_LEN:
            raise errors.InvalidMetadataError(f"name must be 1-{config.MAX_ITEM_NAME_LEN} chars")
        if not uri or len(uri) > config.MAX_METADATA_URI_LEN:
            raise errors.InvalidMetadataError(f"uri must be 1-{config.MAX_METADATA_URI_LEN} chars")

    def _put(self, uow: UnitOfWork, record: AssetRecord) -> None:
        uow.put(self._asset_key(record.asset_id), {
            "asset_id": record.asset_id,
            "owner": record.owner,
            "name": record.name,
            "uri": record.uri,
            "frozen": "1" if record.frozen else "0",
        })

    def get_asset(self, uow: UnitOfWork, asset_id: str) -> Optional[AssetRecord]:
        data = uow.load(self._asset_key(asset_id))
        if data is None:
            return None
        return AssetRecord(
            asset_id=data[b"asset_id"].decode(),
            owner=data[b"owner"].decode(),
            name=data[b"name"].decode(),
            uri=data[b"uri"].decode(),
            frozen=data[b"frozen"] == b"1",
        )

    def mint_asset(self, uow: UnitOfWork, owner: str, name: str, uri: str, locked: bool) -> str:
        self._validate_metadata(name, uri)
        asset_id = uuid.uuid4().hex
        self._put(uow, AssetRecord(asset_id=asset_id, owner=owner, name=name, uri=uri, frozen=locked))
        return asset_id

    def set_frozen(self, uow: UnitOfWork, asset_id: str, frozen: bool) -> None:
        record = self.get_asset(uow, asset_id)
        if record is None:
            raise errors.NotOwnedError(asset_id, None)
        record.frozen = frozen
        self._put(uow, record)

    def burn_asset(self, uow: UnitOfWork, asset_id: str, owner: str) -> None:
        record = self.get_asset(uow, asset_id)
        if record is None or record.owner != owner:
            raise errors.NotOwnedError(asset_id, owner)
        if record.frozen:
            raise errors.AssetFrozenError(asset_id)
        uow.delete(self._asset_key(asset_id))

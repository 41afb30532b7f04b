"""
Box lifecycle state machine.

    Minted → OpenRequested → Opened → [Assigned] → Redeemed

Every public method is one LedgerStore unit of work: guards, collaborator
calls (funds, assets) and record writes either all commit or none do. A
refused transition raises a LootLedgerError subclass and leaves the ledger
untouched.

Batches pick how an opened box is bound to an item:

    DIRECT_REVEAL  reveal selects items[random_index mod total_items], mints the
                   item collectible and burns the placeholder box asset
    MERKLE_ASSIGN  reveal only records the random index; a later assign call
                   binds an inventory hash proven against the batch root
"""

import logging
from typing import Callable, Optional, TypeVar

from Loot_Ledger.loot_shared import config, errors
from Loot_Ledger.loot_shared.hash_tree import (
    build_root,
    inventory_leaf,
    keccak256,
    proof_depth,
    verify_proof,
)
from Loot_Ledger.loot_shared.randomness import (
    MockRandomnessProvider,
    RandomnessProvider,
    derive_index,
    derive_seed,
    is_fulfilled,
    validate_randomness,
)
from Loot_Ledger.loot_shared.signing import price_message, verify_oracle_signature
from Loot_Ledger.loot_shared.types import (
    Batch,
    BatchItem,
    BoxState,
    GlobalConfig,
    InventoryAssignment,
    PriceStore,
    SettlementReceipt,
    VrfPending,
)
from Loot_Ledger.loot_db.collaborators import AssetRegistry, FundsLedger
from Loot_Ledger.loot_db.ledger import LedgerStore, UnitOfWork
from Loot_Ledger.loot_engine.settlement import SettlementEngine, checked_add, is_price_stale

logger = logging.getLogger(__name__)

T = TypeVar("T")

STAGE_MINTED          = "Minted"
STAGE_OPEN_REQUESTED  = "OpenRequested"
STAGE_OPENED          = "Opened"
STAGE_ASSIGNED        = "Assigned"
STAGE_REDEEMED        = "Redeemed"


def _validate_hash(value: bytes, what: str) -> None:
    if len(value) != config.HASH_SIZE or value == config.ZERO_HASH:
        raise errors.InvalidMetadataError(f"{what} must be {config.HASH_SIZE} non-zero bytes")


def _validate_oracle_identity(oracle: str) -> None:
    try:
        raw = bytes.fromhex(oracle)
    except ValueError:
        raise errors.InvalidMetadataError(f"oracle identity {oracle!r} is not hex")
    if len(raw) != 32:
        raise errors.InvalidMetadataError("oracle identity must be a 32-byte Ed25519 key")


def _validate_u64(value: int, operation: str) -> None:
    if value < 0 or value > config.U64_MAX:
        raise errors.InvalidAmountError(value, operation)


class LifecycleEngine:
    def __init__(
        self,
        ledger: LedgerStore,
        funds: FundsLedger,
        assets: AssetRegistry,
        provider: Optional[RandomnessProvider] = None,
        settlement: Optional[SettlementEngine] = None,
    ):
        self.ledger = ledger
        self.funds = funds
        self.assets = assets
        self.provider = provider or MockRandomnessProvider()
        self.settlement = settlement or SettlementEngine(funds)

    def _execute(self, name: str, operation: Callable[[UnitOfWork], T]) -> T:
        try:
            return self.ledger.run(operation, name)
        except errors.LootLedgerError as e:
            logger.debug("%s refused: %s: %s", name, type(e).__name__, e)
            raise

    # ─── Guards ───

    def _require_authority(self, g: GlobalConfig, caller: str, operation: str) -> None:
        if caller != g.authority:
            raise errors.UnauthorizedError(caller, operation)

    def _require_not_paused(self, g: GlobalConfig) -> None:
        if g.paused:
            raise errors.BuybackDisabledError("protocol is paused")

    def _require_owner(self, box: BoxState, caller: str) -> None:
        if caller != box.owner:
            raise errors.NotBoxOwnerError(caller, box.asset_id)

    def _require_privileged(self, g: GlobalConfig, box: BoxState, caller: str, operation: str) -> None:
        if caller not in (box.owner, g.oracle, g.authority) or not caller:
            raise errors.UnauthorizedError(caller, operation)

    def _validate_items(self, items: list[BatchItem], total_items: int, merkle_root: bytes) -> None:
        if len(items) != total_items:
            raise errors.InvalidMetadataError(
                f"batch lists {len(items)} items but declares total_items={total_items}"
            )
        for item in items:
            if not item.inventory_id:
                raise errors.InvalidMetadataError("item inventory_id must not be empty")
            if not item.name or len(item.name) > config.MAX_ITEM_NAME_LEN:
                raise errors.InvalidMetadataError(f"item name must be 1-{config.MAX_ITEM_NAME_LEN} chars")
            if not item.uri or len(item.uri) > config.MAX_METADATA_URI_LEN:
                raise errors.InvalidMetadataError(f"item uri must be 1-{config.MAX_METADATA_URI_LEN} chars")

        leaves = [inventory_leaf(item.inventory_id, item.uri) for item in items]
        if build_root(leaves) != merkle_root:
            raise errors.InvalidMerkleProofError(merkle_root.hex())

    # ─── Setup & Admin ───

    def initialize(self, authority: str, oracle: str, settlement_asset: str) -> GlobalConfig:
        if not authority or not settlement_asset:
            raise errors.InvalidMetadataError("authority and settlement asset are required")
        if oracle:
            _validate_oracle_identity(oracle)

        def _op(uow: UnitOfWork) -> GlobalConfig:
            g = GlobalConfig(
                authority=authority,
                oracle=oracle,
                settlement_asset=settlement_asset,
                buyback_enabled=True,
                paused=False,
                min_treasury_balance=config.DEFAULT_MIN_TREASURY_BALANCE,
                current_batch=0,
                total_boxes_minted=0,
                total_buybacks=0,
                total_buyback_volume=0,
            )
            uow.create_global(g)
            return g

        g = self._execute("initialize", _op)
        logger.info("initialized: authority=%s settlement_asset=%s", authority, settlement_asset)
        return g

    def _admin(self, caller: str, operation: str, mutate: Callable[[GlobalConfig], None]) -> GlobalConfig:
        def _op(uow: UnitOfWork) -> GlobalConfig:
            g = uow.require_global()
            self._require_authority(g, caller, operation)
            mutate(g)
            uow.put_global(g)
            return g

        g = self._execute(operation, _op)
        logger.info("%s by %s", operation, caller)
        return g

    def set_oracle(self, caller: str, oracle: str) -> GlobalConfig:
        _validate_oracle_identity(oracle)

        def _mutate(g: GlobalConfig) -> None:
            g.oracle = oracle

        return self._admin(caller, "set_oracle", _mutate)

    def toggle_buyback(self, caller: str, enabled: bool) -> GlobalConfig:
        def _mutate(g: GlobalConfig) -> None:
            g.buyback_enabled = enabled

        return self._admin(caller, "toggle_buyback", _mutate)

    def set_pricing_mode(self, caller: str, mode: str) -> GlobalConfig:
        if mode not in config.VALID_PRICING_MODES:
            raise errors.InvalidMetadataError(f"unknown pricing mode {mode!r}")

        def _mutate(g: GlobalConfig) -> None:
            g.pricing_mode = mode

        return self._admin(caller, "set_pricing_mode", _mutate)

    def set_min_treasury_balance(self, caller: str, amount: int) -> GlobalConfig:
        _validate_u64(amount, "set_min_treasury_balance")

        def _mutate(g: GlobalConfig) -> None:
            g.min_treasury_balance = amount

        return self._admin(caller, "set_min_treasury_balance", _mutate)

    def emergency_pause(self, caller: str, paused: bool) -> GlobalConfig:
        def _mutate(g: GlobalConfig) -> None:
            g.paused = paused

        g = self._admin(caller, "emergency_pause", _mutate)
        if paused:
            logger.warning("protocol paused by %s", caller)
        return g

    def initiate_authority_transfer(self, caller: str, new_authority: str) -> GlobalConfig:
        if not new_authority:
            raise errors.InvalidMetadataError("new authority must not be empty")

        def _mutate(g: GlobalConfig) -> None:
            g.pending_authority = new_authority

        return self._admin(caller, "initiate_authority_transfer", _mutate)

    def accept_authority(self, caller: str) -> GlobalConfig:
        def _op(uow: UnitOfWork) -> GlobalConfig:
            g = uow.require_global()
            if g.pending_authority is None or caller != g.pending_authority:
                raise errors.UnauthorizedError(caller, "accept_authority")
            g.authority = caller
            g.pending_authority = None
            uow.put_global(g)
            return g

        g = self._execute("accept_authority", _op)
        logger.info("authority transferred to %s", caller)
        return g

    def deposit_treasury(self, depositor: str, amount: int) -> int:
        def _op(uow: UnitOfWork) -> int:
            uow.require_global()
            return self.settlement.deposit(uow, depositor, amount)

        balance = self._execute("deposit_treasury", _op)
        logger.info("treasury deposit: %s added %d, balance=%d", depositor, amount, balance)
        return balance

    def withdraw_treasury(self, caller: str, recipient: str, amount: int) -> int:
        def _op(uow: UnitOfWork) -> int:
            g = uow.require_global()
            self._require_authority(g, caller, "withdraw_treasury")
            return self.settlement.withdraw(uow, g, recipient, amount)

        balance = self._execute("withdraw_treasury", _op)
        logger.info("treasury withdrawal: %d to %s, balance=%d", amount, recipient, balance)
        return balance

    def cancel_open_request(self, caller: str, asset_id: str) -> VrfPending:
        """Drop a randomness request that will never be fulfilled; the box returns to Minted."""
        def _op(uow: UnitOfWork) -> VrfPending:
            g = uow.require_global()
            self._require_authority(g, caller, "cancel_open_request")
            pending = uow.get_pending(asset_id)
            if pending is None:
                raise errors.RecordNotFoundError("Open request", asset_id)
            uow.delete_pending(asset_id)
            return pending

        pending = self._execute("cancel_open_request", _op)
        logger.info("open request cancelled: box=%s request_id=%d", asset_id, pending.request_id)
        return pending

    # ─── Batches ───

    def publish_batch(
        self,
        caller: str,
        batch_id: int,
        merkle_root: bytes,
        snapshot_time: int,
        total_items: int,
        claim_strategy: str = "MERKLE_ASSIGN",
        items: Optional[list[BatchItem]] = None,
    ) -> Batch:
        if batch_id < 0 or batch_id > config.U64_MAX:
            raise errors.InvalidBatchIdError(batch_id, "out of range")
        _validate_hash(merkle_root, "merkle root")
        if total_items <= 0 or total_items > config.U64_MAX:
            raise errors.InvalidPoolSizeError(total_items)
        if claim_strategy not in config.VALID_CLAIM_STRATEGIES:
            raise errors.InvalidMetadataError(f"unknown claim strategy {claim_strategy!r}")

        items = list(items or [])
        if claim_strategy == "DIRECT_REVEAL" and not items:
            raise errors.InvalidMetadataError("DIRECT_REVEAL batches must list their items")
        if items:
            self._validate_items(items, total_items, merkle_root)

        def _op(uow: UnitOfWork) -> Batch:
            g = uow.require_global()
            self._require_authority(g, caller, "publish_batch")
            if snapshot_time < 0 or snapshot_time > uow.now + config.SNAPSHOT_FUTURE_TOLERANCE_SECONDS:
                raise errors.InvalidTimestampError(snapshot_time, uow.now)

            batch = uow.get_batch(batch_id)
            if batch is None:
                batch = Batch(
                    batch_id=batch_id,
                    merkle_root=merkle_root,
                    snapshot_time=snapshot_time,
                    total_items=total_items,
                    boxes_minted=0,
                    boxes_opened=0,
                    claim_strategy=claim_strategy,
                    items=items,
                )
                g.current_batch = checked_add(g.current_batch, 1, "current_batch")
                uow.put_global(g)
            else:
                if batch.boxes_opened > 0:
                    raise errors.BatchRootLockedError(batch_id, batch.boxes_opened)
                batch.merkle_root = merkle_root
                batch.snapshot_time = snapshot_time
                batch.total_items = total_items
                batch.claim_strategy = claim_strategy
                batch.items = items

            uow.put_batch(batch)
            return batch

        batch = self._execute("publish_batch", _op)
        logger.info("batch %d published: root=%s items=%d strategy=%s",
                    batch_id, merkle_root.hex(), total_items, claim_strategy)
        return batch

    # ─── Box lifecycle ───

    def mint_box(self, owner: str, batch_id: int, uri: str) -> BoxState:
        def _op(uow: UnitOfWork) -> BoxState:
            g = uow.require_global()
            self._require_not_paused(g)
            batch = uow.require_batch(batch_id)

            batch.boxes_minted = checked_add(batch.boxes_minted, 1, "boxes_minted")
            g.total_boxes_minted = checked_add(g.total_boxes_minted, 1, "total_boxes_minted")

            name = f"{config.BOX_NAME_PREFIX}{g.total_boxes_minted}"
            asset_id = self.assets.mint_asset(uow, owner, name, uri, locked=False)

            box = BoxState(
                asset_id=asset_id,
                owner=owner,
                batch_id=batch_id,
                opened=False,
                assigned_inventory=config.ZERO_HASH,
                mint_time=uow.now,
                open_time=0,
                random_index=0,
                redeemed=False,
                redeem_time=0,
            )
            uow.create_box(box)
            uow.put_batch(batch)
            uow.put_global(g)
            return box

        box = self._execute("mint_box", _op)
        logger.info("box %s minted: owner=%s batch=%d", box.asset_id, owner, batch_id)
        return box

    def open_box(self, caller: str, asset_id: str, pool_size: int) -> VrfPending:
        def _op(uow: UnitOfWork) -> VrfPending:
            g = uow.require_global()
            self._require_not_paused(g)
            box = uow.require_box(asset_id)
            self._require_owner(box, caller)
            if box.opened:
                raise errors.AlreadyOpenedError(asset_id)

            batch = uow.require_batch(box.batch_id)
            if pool_size <= 0 or pool_size > batch.total_items:
                raise errors.InvalidPoolSizeError(pool_size, batch.total_items)

            seed = derive_seed(asset_id, uow.now)
            pending = VrfPending(
                asset_id=asset_id,
                requester=caller,
                request_id=self.provider.request_randomness(seed),
                request_time=uow.now,
                pool_size=pool_size,
                randomness=config.ZERO_HASH,
            )
            uow.create_pending(pending)
            return pending

        pending = self._execute("open_box", _op)
        logger.info("box %s open requested: request_id=%d pool=%d",
                    asset_id, pending.request_id, pool_size)
        return pending

    def fulfill_randomness(self, caller: str, asset_id: str, request_id: int,
                           randomness: bytes) -> VrfPending:
        def _op(uow: UnitOfWork) -> VrfPending:
            g = uow.require_global()
            if caller not in (g.oracle, g.authority) or not caller:
                raise errors.UnauthorizedError(caller, "fulfill_randomness")

            pending = uow.get_pending(asset_id)
            if pending is None:
                raise errors.VrfNotFulfilledError(f"no open request for box {asset_id}")
            if pending.request_id != request_id:
                raise errors.VrfNotFulfilledError(
                    f"request id {request_id} does not match pending {pending.request_id}"
                )
            if is_fulfilled(pending.randomness):
                raise errors.VrfNotFulfilledError(f"request {request_id} already fulfilled")
            validate_randomness(randomness)

            pending.randomness = randomness
            uow.put_pending(pending)
            return pending

        pending = self._execute("fulfill_randomness", _op)
        logger.info("box %s randomness fulfilled: request_id=%d", asset_id, request_id)
        return pending

    def _claim_direct(self, uow: UnitOfWork, box: BoxState, batch: Batch) -> None:
        item = batch.items[box.random_index % batch.total_items]
        leaf = inventory_leaf(item.inventory_id, item.uri)
        # Same item may be drawn by several boxes; the binding is per (item, box).
        binding = keccak256(leaf + box.asset_id.encode())

        uow.create_assignment(InventoryAssignment(
            inventory_id_hash=binding,
            asset_id=box.asset_id,
            batch_id=batch.batch_id,
            assigned_at=uow.now,
        ))
        box.claimed_asset = self.assets.mint_asset(uow, box.owner, item.name, item.uri, locked=True)
        self.assets.burn_asset(uow, box.asset_id, box.owner)
        box.assigned_inventory = binding
        box.item_leaf = leaf

    def reveal(self, caller: str, asset_id: str) -> BoxState:
        def _op(uow: UnitOfWork) -> BoxState:
            g = uow.require_global()
            self._require_not_paused(g)
            box = uow.require_box(asset_id)
            self._require_privileged(g, box, caller, "reveal")
            if box.opened:
                raise errors.AlreadyOpenedError(asset_id)

            pending = uow.get_pending(asset_id)
            if pending is None:
                raise errors.VrfNotFulfilledError(f"no open request for box {asset_id}")
            if not is_fulfilled(pending.randomness):
                raise errors.VrfNotFulfilledError(f"request {pending.request_id} not yet fulfilled")
            validate_randomness(pending.randomness)

            batch = uow.require_batch(box.batch_id)
            box.random_index = derive_index(pending.randomness, asset_id, box.batch_id, pending.pool_size)
            box.opened = True
            box.open_time = uow.now
            batch.boxes_opened = checked_add(batch.boxes_opened, 1, "boxes_opened")

            if batch.claim_strategy == "DIRECT_REVEAL":
                self._claim_direct(uow, box, batch)

            uow.delete_pending(asset_id)
            uow.put_box(box)
            uow.put_batch(batch)
            return box

        box = self._execute("reveal", _op)
        logger.info("box %s revealed: batch=%d index=%d claimed=%s",
                    asset_id, box.batch_id, box.random_index, box.claimed_asset)
        return box

    def assign(self, caller: str, asset_id: str, inventory_hash: bytes,
               proof: list[bytes]) -> InventoryAssignment:
        _validate_hash(inventory_hash, "inventory hash")

        def _op(uow: UnitOfWork) -> InventoryAssignment:
            g = uow.require_global()
            self._require_not_paused(g)
            box = uow.require_box(asset_id)
            self._require_privileged(g, box, caller, "assign")

            batch = uow.require_batch(box.batch_id)
            if batch.claim_strategy != "MERKLE_ASSIGN":
                raise errors.InvalidBatchIdError(box.batch_id, "batch binds items at reveal")
            if not box.opened:
                raise errors.NotOpenedYetError(asset_id)
            if box.assigned_inventory != config.ZERO_HASH:
                raise errors.InventoryAlreadyAssignedError(box.assigned_inventory.hex())

            # a shorter path would start from an interior node, not an item leaf
            if len(proof) != proof_depth(batch.total_items):
                raise errors.InvalidMerkleProofError(inventory_hash.hex())
            verify_proof(inventory_hash, batch.merkle_root, proof)

            assignment = InventoryAssignment(
                inventory_id_hash=inventory_hash,
                asset_id=asset_id,
                batch_id=box.batch_id,
                assigned_at=uow.now,
            )
            uow.create_assignment(assignment)

            box.assigned_inventory = inventory_hash
            box.item_leaf = inventory_hash
            uow.put_box(box)
            return assignment

        assignment = self._execute("assign", _op)
        logger.info("box %s assigned inventory %s", asset_id, inventory_hash.hex())
        return assignment

    def redeem(self, seller: str, asset_id: str, min_price: int,
               market_price: Optional[int] = None) -> SettlementReceipt:
        """Sell a revealed item back to the treasury.

        Without ``market_price`` the oracle's stored price for the item is used
        and must be fresh. A seller-quoted ``market_price`` is only accepted
        when the authority has switched pricing to QUOTED; it skips the oracle
        but still goes through the slippage and solvency guards.
        """
        _validate_u64(min_price, "redeem")
        if market_price is not None:
            _validate_u64(market_price, "redeem")

        def _op(uow: UnitOfWork) -> SettlementReceipt:
            g = uow.require_global()
            self._require_not_paused(g)
            if not g.buyback_enabled:
                raise errors.BuybackDisabledError("buyback is disabled")

            box = uow.require_box(asset_id)
            self._require_owner(box, seller)
            if box.redeemed:
                raise errors.AlreadyRedeemedError(asset_id)
            if not box.opened:
                raise errors.NotOpenedYetError(asset_id)
            if box.assigned_inventory == config.ZERO_HASH:
                raise errors.InventoryNotAssignedError(asset_id)

            if market_price is not None and g.pricing_mode != config.PRICING_QUOTED:
                raise errors.QuotedPriceNotAllowedError(seller, g.pricing_mode)
            price = self.settlement.resolve_market_price(uow, box.item_leaf, market_price)
            receipt = self.settlement.settle(uow, g, seller, asset_id, box.assigned_inventory,
                                             price, min_price)

            self.assets.set_frozen(uow, box.bound_asset, False)
            self.assets.burn_asset(uow, box.bound_asset, seller)

            box.redeemed = True
            box.redeem_time = uow.now
            uow.put_box(box)
            uow.put_global(g)
            return receipt

        receipt = self._execute("redeem", _op)
        logger.info("box %s redeemed: seller=%s payout=%d fee=%d treasury=%d",
                    asset_id, seller, receipt.payout, receipt.spread_fee, receipt.treasury_after)
        return receipt

    # ─── Oracle prices ───

    def set_price(self, caller: str, inventory_hash: bytes, price: int, timestamp: int,
                  signature: bytes) -> PriceStore:
        _validate_hash(inventory_hash, "inventory hash")
        if price <= 0 or price > config.U64_MAX:
            raise errors.InvalidAmountError(price, "set_price")

        def _op(uow: UnitOfWork) -> PriceStore:
            g = uow.require_global()
            if not g.oracle:
                raise errors.OracleNotSetError()
            if caller != g.oracle:
                raise errors.UnauthorizedError(caller, "set_price")
            if timestamp <= 0 or timestamp > uow.now:
                raise errors.InvalidTimestampError(timestamp, uow.now)
            if is_price_stale(timestamp, uow.now, self.settlement.max_price_age):
                raise errors.PriceStaleError(timestamp, uow.now)

            verify_oracle_signature(price_message(inventory_hash, price, timestamp), signature, g.oracle)

            record = uow.get_price(inventory_hash)
            if record is None:
                record = PriceStore(
                    inventory_id_hash=inventory_hash,
                    price=price,
                    timestamp=timestamp,
                    oracle=g.oracle,
                    update_count=1,
                )
            else:
                if timestamp <= record.timestamp:
                    raise errors.InvalidTimestampError(timestamp, uow.now)
                record.price = price
                record.timestamp = timestamp
                record.oracle = g.oracle
                record.update_count = checked_add(record.update_count, 1, "update_count")

            uow.put_price(record)
            return record

        record = self._execute("set_price", _op)
        logger.info("price set: item=%s price=%d updates=%d",
                    inventory_hash.hex(), price, record.update_count)
        return record

    # ─── Queries ───

    def get_global(self) -> GlobalConfig:
        g = self.ledger.get_global()
        if g is None:
            raise errors.NotInitializedError()
        return g

    def get_batch(self, batch_id: int) -> Batch:
        batch = self.ledger.get_batch(batch_id)
        if batch is None:
            raise errors.RecordNotFoundError("Batch", batch_id)
        return batch

    def get_box(self, asset_id: str) -> BoxState:
        box = self.ledger.get_box(asset_id)
        if box is None:
            raise errors.RecordNotFoundError("Box", asset_id)
        return box

    def get_price(self, inventory_hash: bytes) -> Optional[PriceStore]:
        return self.ledger.get_price(inventory_hash)

    def box_stage(self, asset_id: str) -> str:
        box = self.get_box(asset_id)
        if box.redeemed:
            return STAGE_REDEEMED
        if box.assigned_inventory != config.ZERO_HASH:
            return STAGE_ASSIGNED
        if box.opened:
            return STAGE_OPENED
        if self.ledger.get_pending(asset_id) is not None:
            return STAGE_OPEN_REQUESTED
        return STAGE_MINTED

    def balance_of(self, account: str) -> int:
        return self.ledger.run(lambda uow: self.funds.balance_of(uow, account), "balance_of")

    def treasury_balance(self) -> int:
        return self.ledger.run(self.settlement.treasury_balance, "treasury_balance")

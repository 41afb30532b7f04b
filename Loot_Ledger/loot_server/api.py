"""
FastAPI endpoints for the mystery-box ledger.

Binary values (hashes, randomness, proofs, signatures) are hex-encoded in HTTP
transport. The API layer decodes hex → bytes before calling the engine and
encodes bytes → hex in responses. Caller identities are plain request fields.

Endpoints are synchronous: the Redis client blocks, so FastAPI runs them in
its threadpool.
"""

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel, field_validator

from Loot_Ledger.loot_server import config, db
from Loot_Ledger.loot_shared import config as ledger_config
from Loot_Ledger.loot_shared.errors import (
    AuthorizationError,
    CollaboratorError,
    EconomicError,
    InputValidationError,
    LedgerError,
    LootLedgerError,
    ProofError,
    RecordNotFoundError,
    StateConflictError,
)
from Loot_Ledger.loot_shared.types import (
    Batch,
    BatchItem,
    BoxState,
    GlobalConfig,
    InventoryAssignment,
    PriceStore,
    VrfPending,
)
from Loot_Ledger.loot_db.sweeper import PendingSweeper
from Loot_Ledger.loot_engine.lifecycle import LifecycleEngine


def _check_hex(v: str, size: Optional[int] = None) -> str:
    try:
        raw = bytes.fromhex(v)
    except ValueError:
        raise ValueError(f"not a hex string: {v!r}")
    if size is not None and len(raw) != size:
        raise ValueError(f"expected {size} bytes, got {len(raw)}")
    return v


# ── Pydantic request/response models ──


class InitializeRequest(BaseModel):
    authority: str
    oracle: str = ""
    settlement_asset: str


class GlobalOut(BaseModel):
    authority: str
    oracle: str
    settlement_asset: str
    buyback_enabled: bool
    paused: bool
    min_treasury_balance: int
    current_batch: int
    total_boxes_minted: int
    total_buybacks: int
    total_buyback_volume: int
    pending_authority: Optional[str] = None
    pricing_mode: str


class PauseRequest(BaseModel):
    caller: str
    paused: bool


class BuybackRequest(BaseModel):
    caller: str
    enabled: bool


class PricingModeRequest(BaseModel):
    caller: str
    mode: str

    @field_validator("mode")
    @classmethod
    def validate_mode(cls, v):
        if v not in ledger_config.VALID_PRICING_MODES:
            raise ValueError(f"Invalid pricing mode: {v}")
        return v


class MinTreasuryRequest(BaseModel):
    caller: str
    amount: int


class OracleRequest(BaseModel):
    caller: str
    oracle: str


class AuthorityInitiateRequest(BaseModel):
    caller: str
    new_authority: str


class AuthorityAcceptRequest(BaseModel):
    caller: str


class WithdrawRequest(BaseModel):
    caller: str
    recipient: str
    amount: int


class DepositRequest(BaseModel):
    depositor: str
    amount: int


class BalanceResponse(BaseModel):
    balance: int


class CancelOpenRequest(BaseModel):
    caller: str
    asset_id: str


class SweepRequest(BaseModel):
    caller: str
    max_age_seconds: int = config.SWEEP_MAX_AGE_SECONDS
    dry_run: bool = False


class SweepResponse(BaseModel):
    requests_scanned: int
    requests_cancelled: int
    asset_ids: list[str]


class BatchItemModel(BaseModel):
    inventory_id: str
    name: str
    uri: str


class PublishBatchRequest(BaseModel):
    caller: str
    batch_id: int
    merkle_root_hex: str
    snapshot_time: int
    total_items: int
    claim_strategy: str = "MERKLE_ASSIGN"
    items: list[BatchItemModel] = []

    @field_validator("merkle_root_hex")
    @classmethod
    def validate_root(cls, v):
        return _check_hex(v, ledger_config.HASH_SIZE)

    @field_validator("claim_strategy")
    @classmethod
    def validate_strategy(cls, v):
        if v not in ledger_config.VALID_CLAIM_STRATEGIES:
            raise ValueError(f"Invalid claim_strategy: {v}")
        return v


class BatchOut(BaseModel):
    batch_id: int
    merkle_root_hex: str
    snapshot_time: int
    total_items: int
    boxes_minted: int
    boxes_opened: int
    claim_strategy: str
    items: list[BatchItemModel]


class MintRequest(BaseModel):
    owner: str
    batch_id: int
    uri: str


class BoxOut(BaseModel):
    asset_id: str
    owner: str
    batch_id: int
    stage: str
    opened: bool
    assigned_inventory_hex: str
    mint_time: int
    open_time: int
    random_index: int
    redeemed: bool
    redeem_time: int
    item_leaf_hex: str
    claimed_asset: Optional[str] = None


class OpenRequest(BaseModel):
    caller: str
    asset_id: str
    pool_size: int


class PendingOut(BaseModel):
    asset_id: str
    requester: str
    request_id: int
    request_time: int
    pool_size: int
    fulfilled: bool


class FulfillRequest(BaseModel):
    caller: str
    asset_id: str
    request_id: int
    randomness_hex: str

    @field_validator("randomness_hex")
    @classmethod
    def validate_randomness(cls, v):
        return _check_hex(v, ledger_config.HASH_SIZE)


class RevealRequest(BaseModel):
    caller: str
    asset_id: str


class AssignRequest(BaseModel):
    caller: str
    asset_id: str
    inventory_hash_hex: str
    proof_hex: list[str] = []

    @field_validator("inventory_hash_hex")
    @classmethod
    def validate_hash(cls, v):
        return _check_hex(v, ledger_config.HASH_SIZE)

    @field_validator("proof_hex")
    @classmethod
    def validate_proof(cls, v):
        return [_check_hex(p) for p in v]


class AssignmentOut(BaseModel):
    inventory_hash_hex: str
    asset_id: str
    batch_id: int
    assigned_at: int


class RedeemRequest(BaseModel):
    seller: str
    asset_id: str
    min_price: int
    market_price: Optional[int] = None


class ReceiptOut(BaseModel):
    asset_id: str
    seller: str
    inventory_hash_hex: str
    market_price: int
    spread_fee: int
    payout: int
    treasury_after: int
    redeemed_at: int


class PriceRequest(BaseModel):
    caller: str
    inventory_hash_hex: str
    price: int
    timestamp: int
    signature_hex: str

    @field_validator("inventory_hash_hex")
    @classmethod
    def validate_hash(cls, v):
        return _check_hex(v, ledger_config.HASH_SIZE)

    @field_validator("signature_hex")
    @classmethod
    def validate_signature(cls, v):
        return _check_hex(v)


class PriceOut(BaseModel):
    inventory_hash_hex: str
    price: int
    timestamp: int
    oracle: str
    update_count: int


class BatchSummaryOut(BaseModel):
    batch_id: int
    claim_strategy: str
    total_items: int
    boxes_minted: int
    boxes_opened: int


class StatsResponse(BaseModel):
    total_boxes_minted: int
    total_buybacks: int
    total_buyback_volume: int
    treasury_balance: int
    storage_bytes: int
    consistent: bool
    batches: list[BatchSummaryOut]


class HealthResponse(BaseModel):
    status: str
    ledger_connected: bool


# ── App lifecycle ──


@asynccontextmanager
async def lifespan(app: FastAPI):
    db.create_engine(config.REDIS_URL, config.SETTLEMENT_ASSET)
    yield
    db.close_engine()


app = FastAPI(title="Loot Ledger", version="1.0.0", lifespan=lifespan)


def _get_engine() -> LifecycleEngine:
    if db.engine is None:
        raise HTTPException(status_code=503, detail="Ledger not initialized")
    return db.engine


def _status_for(e: LootLedgerError) -> int:
    if isinstance(e, AuthorizationError):
        return 403
    if isinstance(e, RecordNotFoundError):
        return 404
    if isinstance(e, StateConflictError):
        return 409
    if isinstance(e, (EconomicError, ProofError, InputValidationError, CollaboratorError)):
        return 422
    if isinstance(e, LedgerError):
        return 503
    return 500


def _call(fn, *args, **kwargs):
    try:
        return fn(*args, **kwargs)
    except LootLedgerError as e:
        raise HTTPException(status_code=_status_for(e), detail=str(e))


def _global_out(g: GlobalConfig) -> GlobalOut:
    return GlobalOut(
        authority=g.authority,
        oracle=g.oracle,
        settlement_asset=g.settlement_asset,
        buyback_enabled=g.buyback_enabled,
        paused=g.paused,
        min_treasury_balance=g.min_treasury_balance,
        current_batch=g.current_batch,
        total_boxes_minted=g.total_boxes_minted,
        total_buybacks=g.total_buybacks,
        total_buyback_volume=g.total_buyback_volume,
        pending_authority=g.pending_authority,
        pricing_mode=g.pricing_mode,
    )


def _batch_out(b: Batch) -> BatchOut:
    return BatchOut(
        batch_id=b.batch_id,
        merkle_root_hex=b.merkle_root.hex(),
        snapshot_time=b.snapshot_time,
        total_items=b.total_items,
        boxes_minted=b.boxes_minted,
        boxes_opened=b.boxes_opened,
        claim_strategy=b.claim_strategy,
        items=[BatchItemModel(inventory_id=i.inventory_id, name=i.name, uri=i.uri) for i in b.items],
    )


def _box_out(engine: LifecycleEngine, b: BoxState) -> BoxOut:
    return BoxOut(
        asset_id=b.asset_id,
        owner=b.owner,
        batch_id=b.batch_id,
        stage=_call(engine.box_stage, b.asset_id),
        opened=b.opened,
        assigned_inventory_hex=b.assigned_inventory.hex(),
        mint_time=b.mint_time,
        open_time=b.open_time,
        random_index=b.random_index,
        redeemed=b.redeemed,
        redeem_time=b.redeem_time,
        item_leaf_hex=b.item_leaf.hex(),
        claimed_asset=b.claimed_asset,
    )


def _pending_out(p: VrfPending) -> PendingOut:
    return PendingOut(
        asset_id=p.asset_id,
        requester=p.requester,
        request_id=p.request_id,
        request_time=p.request_time,
        pool_size=p.pool_size,
        fulfilled=p.randomness != ledger_config.ZERO_HASH,
    )


def _price_out(p: PriceStore) -> PriceOut:
    return PriceOut(
        inventory_hash_hex=p.inventory_id_hash.hex(),
        price=p.price,
        timestamp=p.timestamp,
        oracle=p.oracle,
        update_count=p.update_count,
    )


def _assignment_out(a: InventoryAssignment) -> AssignmentOut:
    return AssignmentOut(
        inventory_hash_hex=a.inventory_id_hash.hex(),
        asset_id=a.asset_id,
        batch_id=a.batch_id,
        assigned_at=a.assigned_at,
    )


# ── Admin ──


@app.post("/v1/admin/initialize", response_model=GlobalOut)
def initialize(req: InitializeRequest):
    engine = _get_engine()
    g = _call(engine.initialize, req.authority, req.oracle, req.settlement_asset)
    return _global_out(g)


@app.post("/v1/admin/pause", response_model=GlobalOut)
def emergency_pause(req: PauseRequest):
    engine = _get_engine()
    return _global_out(_call(engine.emergency_pause, req.caller, req.paused))


@app.post("/v1/admin/buyback", response_model=GlobalOut)
def toggle_buyback(req: BuybackRequest):
    engine = _get_engine()
    return _global_out(_call(engine.toggle_buyback, req.caller, req.enabled))


@app.post("/v1/admin/pricing-mode", response_model=GlobalOut)
def set_pricing_mode(req: PricingModeRequest):
    engine = _get_engine()
    return _global_out(_call(engine.set_pricing_mode, req.caller, req.mode))


@app.post("/v1/admin/min-treasury", response_model=GlobalOut)
def set_min_treasury_balance(req: MinTreasuryRequest):
    engine = _get_engine()
    return _global_out(_call(engine.set_min_treasury_balance, req.caller, req.amount))


@app.post("/v1/admin/oracle", response_model=GlobalOut)
def set_oracle(req: OracleRequest):
    engine = _get_engine()
    return _global_out(_call(engine.set_oracle, req.caller, req.oracle))


@app.post("/v1/admin/authority/initiate", response_model=GlobalOut)
def initiate_authority_transfer(req: AuthorityInitiateRequest):
    engine = _get_engine()
    return _global_out(_call(engine.initiate_authority_transfer, req.caller, req.new_authority))


@app.post("/v1/admin/authority/accept", response_model=GlobalOut)
def accept_authority(req: AuthorityAcceptRequest):
    engine = _get_engine()
    return _global_out(_call(engine.accept_authority, req.caller))


@app.post("/v1/admin/treasury/withdraw", response_model=BalanceResponse)
def withdraw_treasury(req: WithdrawRequest):
    engine = _get_engine()
    balance = _call(engine.withdraw_treasury, req.caller, req.recipient, req.amount)
    return BalanceResponse(balance=balance)


@app.post("/v1/admin/open/cancel", response_model=PendingOut)
def cancel_open_request(req: CancelOpenRequest):
    engine = _get_engine()
    return _pending_out(_call(engine.cancel_open_request, req.caller, req.asset_id))


@app.post("/v1/admin/open/sweep", response_model=SweepResponse)
def sweep_open_requests(req: SweepRequest):
    engine = _get_engine()
    sweeper = PendingSweeper(engine, engine.ledger, req.caller)
    if req.dry_run:
        result = _call(sweeper.dry_run, req.max_age_seconds)
    else:
        result = _call(sweeper.sweep, req.max_age_seconds)
    return SweepResponse(
        requests_scanned=result.requests_scanned,
        requests_cancelled=result.requests_cancelled,
        asset_ids=result.asset_ids,
    )


@app.post("/v1/treasury/deposit", response_model=BalanceResponse)
def deposit_treasury(req: DepositRequest):
    engine = _get_engine()
    return BalanceResponse(balance=_call(engine.deposit_treasury, req.depositor, req.amount))


# ── Batches ──


@app.post("/v1/batches", response_model=BatchOut)
def publish_batch(req: PublishBatchRequest):
    engine = _get_engine()
    items = [BatchItem(inventory_id=i.inventory_id, name=i.name, uri=i.uri) for i in req.items]
    batch = _call(
        engine.publish_batch,
        req.caller,
        req.batch_id,
        bytes.fromhex(req.merkle_root_hex),
        req.snapshot_time,
        req.total_items,
        req.claim_strategy,
        items,
    )
    return _batch_out(batch)


@app.get("/v1/batches/{batch_id}", response_model=BatchOut)
def get_batch(batch_id: int):
    engine = _get_engine()
    return _batch_out(_call(engine.get_batch, batch_id))


# ── Boxes ──


@app.post("/v1/boxes/mint", response_model=BoxOut)
def mint_box(req: MintRequest):
    engine = _get_engine()
    box = _call(engine.mint_box, req.owner, req.batch_id, req.uri)
    return _box_out(engine, box)


@app.post("/v1/boxes/open", response_model=PendingOut)
def open_box(req: OpenRequest):
    engine = _get_engine()
    return _pending_out(_call(engine.open_box, req.caller, req.asset_id, req.pool_size))


@app.post("/v1/boxes/fulfill", response_model=PendingOut)
def fulfill_randomness(req: FulfillRequest):
    engine = _get_engine()
    pending = _call(
        engine.fulfill_randomness,
        req.caller,
        req.asset_id,
        req.request_id,
        bytes.fromhex(req.randomness_hex),
    )
    return _pending_out(pending)


@app.post("/v1/boxes/reveal", response_model=BoxOut)
def reveal(req: RevealRequest):
    engine = _get_engine()
    box = _call(engine.reveal, req.caller, req.asset_id)
    return _box_out(engine, box)


@app.post("/v1/boxes/assign", response_model=AssignmentOut)
def assign(req: AssignRequest):
    engine = _get_engine()
    assignment = _call(
        engine.assign,
        req.caller,
        req.asset_id,
        bytes.fromhex(req.inventory_hash_hex),
        [bytes.fromhex(p) for p in req.proof_hex],
    )
    return _assignment_out(assignment)


@app.post("/v1/boxes/redeem", response_model=ReceiptOut)
def redeem(req: RedeemRequest):
    engine = _get_engine()
    receipt = _call(engine.redeem, req.seller, req.asset_id, req.min_price, req.market_price)
    return ReceiptOut(
        asset_id=receipt.asset_id,
        seller=receipt.seller,
        inventory_hash_hex=receipt.inventory_hash.hex(),
        market_price=receipt.market_price,
        spread_fee=receipt.spread_fee,
        payout=receipt.payout,
        treasury_after=receipt.treasury_after,
        redeemed_at=receipt.redeemed_at,
    )


@app.get("/v1/boxes/{asset_id}", response_model=BoxOut)
def get_box(asset_id: str):
    engine = _get_engine()
    return _box_out(engine, _call(engine.get_box, asset_id))


# ── Prices ──


@app.post("/v1/prices", response_model=PriceOut)
def set_price(req: PriceRequest):
    engine = _get_engine()
    record = _call(
        engine.set_price,
        req.caller,
        bytes.fromhex(req.inventory_hash_hex),
        req.price,
        req.timestamp,
        bytes.fromhex(req.signature_hex),
    )
    return _price_out(record)


# ── Reporting ──


@app.get("/v1/stats", response_model=StatsResponse)
def stats():
    _get_engine()
    dashboard = _call(db.reporter.get_full_dashboard)
    g = dashboard["global"]
    return StatsResponse(
        total_boxes_minted=g.total_boxes_minted,
        total_buybacks=g.total_buybacks,
        total_buyback_volume=g.total_buyback_volume,
        treasury_balance=dashboard["treasury_balance"],
        storage_bytes=dashboard["storage"].total_bytes,
        consistent=dashboard["consistency"].consistent,
        batches=[
            BatchSummaryOut(
                batch_id=s.batch_id,
                claim_strategy=s.claim_strategy,
                total_items=s.total_items,
                boxes_minted=s.boxes_minted,
                boxes_opened=s.boxes_opened,
            )
            for s in dashboard["batches"]
        ],
    )


@app.get("/v1/health", response_model=HealthResponse)
def health():
    connected = db.health_check()
    return HealthResponse(
        status="ok" if connected else "degraded",
        ledger_connected=connected,
    )

from dataclasses import dataclass, field
from typing import Optional


@dataclass
class GlobalConfig:
    authority:            str
    oracle:               str
    settlement_asset:     str
    buyback_enabled:      bool
    paused:               bool
    min_treasury_balance: int
    current_batch:        int
    total_boxes_minted:   int
    total_buybacks:       int
    total_buyback_volume: int
    pending_authority:    Optional[str] = None
    pricing_mode:         str = "ORACLE"

@dataclass
class BatchItem:
    inventory_id: str
    name:         str
    uri:          str

@dataclass
class Batch:
    batch_id:       int
    merkle_root:    bytes
    snapshot_time:  int
    total_items:    int
    boxes_minted:   int
    boxes_opened:   int
    claim_strategy: str
    items:          list[BatchItem] = field(default_factory=list)

@dataclass
class BoxState:
    asset_id:           str
    owner:              str
    batch_id:           int
    opened:             bool
    assigned_inventory: bytes
    mint_time:          int
    open_time:          int
    random_index:       int
    redeemed:           bool
    redeem_time:        int
    item_leaf:          bytes = bytes(32)
    claimed_asset:      Optional[str] = None

    @property
    def bound_asset(self) -> str:
        """Collectible that settlement burns: the claimed item if any, else the box itself."""
        return self.claimed_asset or self.asset_id

@dataclass
class VrfPending:
    asset_id:     str
    requester:    str
    request_id:   int
    request_time: int
    pool_size:    int
    randomness:   bytes

@dataclass
class InventoryAssignment:
    inventory_id_hash: bytes
    asset_id:          str
    batch_id:          int
    assigned_at:       int

@dataclass
class PriceStore:
    inventory_id_hash: bytes
    price:             int
    timestamp:         int
    oracle:            str
    update_count:      int

@dataclass
class AssetRecord:
    asset_id: str
    owner:    str
    name:     str
    uri:      str
    frozen:   bool

@dataclass
class Payout:
    market_price: int
    spread_fee:   int
    payout:       int

@dataclass
class SettlementReceipt:
    asset_id:        str
    seller:          str
    inventory_hash:  bytes
    market_price:    int
    spread_fee:      int
    payout:          int
    treasury_after:  int
    redeemed_at:     int

@dataclass
class BatchSummary:
    batch_id:       int
    claim_strategy: str
    total_items:    int
    boxes_minted:   int
    boxes_opened:   int

@dataclass
class StorageReport:
    total_bytes:  int
    per_label:    dict[str, int]
    record_count: dict[str, int]

@dataclass
class ConsistencyReport:
    total_boxes_minted: int
    batch_boxes_minted: int
    consistent:         bool

@dataclass
class SweepResult:
    requests_scanned:   int
    requests_cancelled: int
    asset_ids:          list[str]

# Redis Connection

REDIS_HOST              = "localhost"
REDIS_PORT              = 6379
REDIS_LEDGER_DB         = 0          # Logical DB for the box ledger
REDIS_SOCKET_TIMEOUT    = 5          # seconds

# Key Namespace Prefixes

LEDGER_KEY_PREFIX       = "ledger:v1"            # ledger:v1:{label}:{address_hex}
FUNDS_KEY_PREFIX        = "funds:v1"             # funds:v1:{asset}:{account}
ASSET_KEY_PREFIX        = "asset:v1"             # asset:v1:{asset_id}

# Record Labels (address derivation: keccak(label || discriminant))

GLOBAL_LABEL            = "global"
BATCH_LABEL             = "batch"
BOX_LABEL               = "box"
VRF_PENDING_LABEL       = "vrf_pending"
INVENTORY_LABEL         = "inventory"
PRICE_LABEL             = "price"
TREASURY_LABEL          = "treasury"

# Ledger Settings

LEDGER_OPTIMISTIC_LOCK_RETRIES = 3
LEDGER_SCAN_COUNT              = 100

# Protocol Constants

SETTLEMENT_DECIMALS                 = 6
MAX_PRICE_AGE_SECONDS               = 300                   # 5 minutes
DEFAULT_MIN_TREASURY_BALANCE        = 1000 * 1_000_000      # 1000 units
BUYBACK_SPREAD_BPS                  = 100                   # 1%
BPS_DENOMINATOR                     = 10_000
MAX_MERKLE_PROOF_DEPTH              = 20
SNAPSHOT_FUTURE_TOLERANCE_SECONDS   = 60
STALE_OPEN_REQUEST_SECONDS          = 86_400                # sweeper default

U64_MAX                 = 2**64 - 1
HASH_SIZE               = 32
ZERO_HASH               = bytes(32)
ED25519_SIG_SIZE        = 64

# Metadata Limits

MAX_METADATA_URI_LEN    = 200
MAX_ITEM_NAME_LEN       = 32
BOX_NAME_PREFIX         = "Mystery Box #"

# Claim Strategies

VALID_CLAIM_STRATEGIES  = {"DIRECT_REVEAL", "MERKLE_ASSIGN"}

# Buyback Pricing Modes

PRICING_ORACLE          = "ORACLE"               # signed oracle price only
PRICING_QUOTED          = "QUOTED"               # seller may quote the sell-back price
VALID_PRICING_MODES     = {PRICING_ORACLE, PRICING_QUOTED}

# Persisted Record Sizes (bytes, for storage calc)

RECORD_SIZE_BYTES = {
    "global":      8 + 32 + 32 + 32 + 1 + 1 + 1 + 8 + 8 + 8 + 8 + 8 + 33,
    "batch":       8 + 8 + 32 + 8 + 8 + 8 + 8 + 1,      # + item list, see stats
    "box":         8 + 32 + 32 + 8 + 1 + 32 + 32 + 8 + 8 + 8 + 1 + 8 + 32,
    "vrf_pending": 8 + 32 + 32 + 8 + 8 + 8 + 32,
    "inventory":   8 + 32 + 32 + 8 + 8,
    "price":       8 + 32 + 8 + 8 + 32 + 8,
}
BATCH_ITEM_SIZE_BYTES   = 4 + MAX_ITEM_NAME_LEN + 4 + MAX_METADATA_URI_LEN + 32

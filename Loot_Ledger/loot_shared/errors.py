class LootLedgerError(Exception):
    pass


# ─── Authorization ───

class AuthorizationError(LootLedgerError):
    pass

class UnauthorizedError(AuthorizationError):
    def __init__(self , caller, operation):
        self.caller = caller
        self.operation = operation
        message = f"Caller {caller} is not allowed to {operation}"
        super().__init__(message)

class NotBoxOwnerError(AuthorizationError):
    def __init__(self , caller, asset_id):
        self.caller = caller
        self.asset_id = asset_id
        message = f"Box {asset_id} is not owned by {caller}"
        super().__init__(message)

class OracleNotSetError(AuthorizationError):
    def __init__(self):
        super().__init__("Oracle identity not set")

class QuotedPriceNotAllowedError(AuthorizationError):
    def __init__(self , seller, pricing_mode):
        self.seller = seller
        self.pricing_mode = pricing_mode
        message = f"Seller {seller} may not quote a price while pricing mode is {pricing_mode}"
        super().__init__(message)


# ─── Proof / Crypto ───

class ProofError(LootLedgerError):
    pass

class InvalidMerkleProofError(ProofError):
    def __init__(self , leaf_hex):
        self.leaf_hex = leaf_hex
        message = f"Invalid Merkle proof for leaf {leaf_hex}"
        super().__init__(message)

class MerkleProofTooDeepError(ProofError):
    def __init__(self, depth, max_depth):
        self.depth = depth
        self.max_depth = max_depth
        message = f"Merkle proof depth {depth} exceeds maximum {max_depth}"
        super().__init__(message)

class VrfNotFulfilledError(ProofError):
    def __init__(self , reason):
        self.reason = reason
        message = f"Randomness not fulfilled or invalid: {reason}"
        super().__init__(message)

class InvalidSignatureError(ProofError):
    def __init__(self , reason):
        self.reason = reason
        message = f"Invalid oracle signature: {reason}"
        super().__init__(message)


# ─── State Conflict ───

class StateConflictError(LootLedgerError):
    pass

class AlreadyOpenedError(StateConflictError):
    def __init__(self , asset_id):
        self.asset_id = asset_id
        message = f"Box {asset_id} already opened"
        super().__init__(message)

class NotOpenedYetError(StateConflictError):
    def __init__(self , asset_id):
        self.asset_id = asset_id
        message = f"Box {asset_id} has not been opened yet"
        super().__init__(message)

class BoxAlreadyExistsError(StateConflictError):
    def __init__(self , asset_id):
        self.asset_id = asset_id
        message = f"Box {asset_id} already exists"
        super().__init__(message)

class OpenAlreadyRequestedError(StateConflictError):
    def __init__(self , asset_id):
        self.asset_id = asset_id
        message = f"Open request already pending for box {asset_id}"
        super().__init__(message)

class InventoryAlreadyAssignedError(StateConflictError):
    def __init__(self , inventory_hex):
        self.inventory_hex = inventory_hex
        message = f"Inventory item {inventory_hex} already assigned"
        super().__init__(message)

class InventoryNotAssignedError(StateConflictError):
    def __init__(self , asset_id):
        self.asset_id = asset_id
        message = f"Box {asset_id} has no assigned inventory"
        super().__init__(message)

class AlreadyRedeemedError(StateConflictError):
    def __init__(self , asset_id):
        self.asset_id = asset_id
        message = f"Box {asset_id} already redeemed"
        super().__init__(message)

class BuybackDisabledError(StateConflictError):
    def __init__(self , reason):
        self.reason = reason
        message = f"Operation disabled: {reason}"
        super().__init__(message)

class AlreadyInitializedError(StateConflictError):
    def __init__(self):
        super().__init__("Global config already initialized")

class NotInitializedError(StateConflictError):
    def __init__(self):
        super().__init__("Global config not initialized")

class BatchRootLockedError(StateConflictError):
    def __init__(self, batch_id, boxes_opened):
        self.batch_id = batch_id
        self.boxes_opened = boxes_opened
        message = f"Batch {batch_id} root is locked: {boxes_opened} boxes already opened against it"
        super().__init__(message)


# ─── Economic ───

class EconomicError(LootLedgerError):
    pass

class SlippageExceededError(EconomicError):
    def __init__(self, payout, min_price):
        self.payout = payout
        self.min_price = min_price
        message = f"Payout {payout} below minimum acceptable price {min_price}"
        super().__init__(message)

class TreasuryInsufficientError(EconomicError):
    def __init__(self, balance, amount, floor):
        self.balance = balance
        self.amount = amount
        self.floor = floor
        message = f"Treasury balance {balance} cannot cover {amount} above floor {floor}"
        super().__init__(message)

class PriceStaleError(EconomicError):
    def __init__(self, price_timestamp, now):
        self.price_timestamp = price_timestamp
        self.now = now
        message = f"Price from {price_timestamp} is stale or missing at {now}"
        super().__init__(message)

class ArithmeticOverflowError(EconomicError):
    def __init__(self , operation):
        self.operation = operation
        message = f"Arithmetic overflow in {operation}"
        super().__init__(message)


# ─── Input Validation ───

class InputValidationError(LootLedgerError):
    pass

class InvalidBatchIdError(InputValidationError):
    def __init__(self , batch_id, reason=""):
        self.batch_id = batch_id
        message = f"Invalid batch {batch_id}" + (f": {reason}" if reason else "")
        super().__init__(message)

class InvalidPoolSizeError(InputValidationError):
    def __init__(self, pool_size, max_size=None):
        self.pool_size = pool_size
        self.max_size = max_size
        message = f"Invalid pool size {pool_size}" + (f" (max {max_size})" if max_size is not None else "")
        super().__init__(message)

class InvalidMetadataError(InputValidationError):
    def __init__(self , reason):
        self.reason = reason
        message = f"Invalid metadata: {reason}"
        super().__init__(message)

class InvalidAmountError(InputValidationError):
    def __init__(self, amount, operation):
        self.amount = amount
        self.operation = operation
        message = f"Invalid amount {amount} for {operation}"
        super().__init__(message)

class InvalidTimestampError(InputValidationError):
    def __init__(self, timestamp, now):
        self.timestamp = timestamp
        self.now = now
        message = f"Invalid timestamp {timestamp} (now {now})"
        super().__init__(message)

class RecordNotFoundError(InputValidationError):
    def __init__(self, label, key):
        self.label = label
        self.key = key
        message = f"{label} {key} not found"
        super().__init__(message)


# ─── Ledger Infrastructure ───

class LedgerError(LootLedgerError):
    pass

class LedgerUnavailableError(LedgerError):
    def __init__(self , message):
        message = f"Ledger_error  = {message}"
        super().__init__(message)

class ConcurrencyError(LedgerError):
    def __init__(self, operation):
        message = f"Optimistic lock failed after max retries: {operation}"
        super().__init__(message)


# ─── Collaborators ───

class CollaboratorError(LootLedgerError):
    pass

class InsufficientFundsError(CollaboratorError):
    def __init__(self, account, balance, amount):
        self.account = account
        self.balance = balance
        self.amount = amount
        message = f"Account {account} holds {balance}, cannot transfer {amount}"
        super().__init__(message)

class AssetFrozenError(CollaboratorError):
    def __init__(self , asset_id):
        self.asset_id = asset_id
        message = f"Asset {asset_id} is frozen"
        super().__init__(message)

class NotOwnedError(CollaboratorError):
    def __init__(self, asset_id, owner):
        self.asset_id = asset_id
        self.owner = owner
        message = f"Asset {asset_id} is not owned by {owner}"
        super().__init__(message)

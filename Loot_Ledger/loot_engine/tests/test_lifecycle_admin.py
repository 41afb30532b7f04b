import nacl.signing
import pytest

from Loot_Ledger.loot_shared import config, errors
from Loot_Ledger.loot_shared.hash_tree import build_root, keccak256
from Loot_Ledger.loot_shared.signing import oracle_identity, sign_price

ITEM = keccak256(b"SKU-042|https://items.example/42.json")
TREASURY_SEED = 10_000 * 1_000_000


# ─── Initialization ───

def test_initialize_sets_defaults(engine, authority, oracle_id):
    g = engine.initialize(authority, oracle_id, "USDC")
    assert g.buyback_enabled is True
    assert g.paused is False
    assert g.min_treasury_balance == config.DEFAULT_MIN_TREASURY_BALANCE
    assert g.current_batch == 0
    assert g.pending_authority is None
    assert engine.get_global() == g


def test_initialize_only_once(ready_engine, authority, oracle_id):
    with pytest.raises(errors.AlreadyInitializedError):
        ready_engine.initialize(authority, oracle_id, "USDC")


def test_initialize_rejects_malformed_oracle(engine, authority):
    with pytest.raises(errors.InvalidMetadataError):
        engine.initialize(authority, "zz-not-a-key", "USDC")


# ─── Authority gating ───

@pytest.mark.parametrize("call", [
    lambda e: e.toggle_buyback("mallory", False),
    lambda e: e.emergency_pause("mallory", True),
    lambda e: e.set_min_treasury_balance("mallory", 0),
    lambda e: e.initiate_authority_transfer("mallory", "mallory"),
    lambda e: e.withdraw_treasury("mallory", "mallory", 1),
    lambda e: e.publish_batch("mallory", 9, keccak256(b"root"), 0, 1),
    lambda e: e.set_pricing_mode("mallory", "QUOTED"),
])
def test_admin_operations_require_authority(ready_engine, call):
    with pytest.raises(errors.UnauthorizedError):
        call(ready_engine)


def test_set_oracle(ready_engine, authority):
    new_oracle = oracle_identity(nacl.signing.SigningKey.generate())
    assert ready_engine.set_oracle(authority, new_oracle).oracle == new_oracle
    with pytest.raises(errors.InvalidMetadataError):
        ready_engine.set_oracle(authority, "abcd")


def test_set_pricing_mode(ready_engine, authority):
    assert ready_engine.get_global().pricing_mode == config.PRICING_ORACLE
    assert ready_engine.set_pricing_mode(authority, config.PRICING_QUOTED).pricing_mode == "QUOTED"
    assert ready_engine.get_global().pricing_mode == "QUOTED"
    with pytest.raises(errors.InvalidMetadataError):
        ready_engine.set_pricing_mode(authority, "AUCTION")


def test_pause_gates_user_operations_not_admin(ready_engine, assign_batch, authority):
    box = ready_engine.mint_box("alice", assign_batch.batch_id, "https://boxes.example/1.json")
    ready_engine.emergency_pause(authority, True)

    with pytest.raises(errors.BuybackDisabledError):
        ready_engine.mint_box("alice", assign_batch.batch_id, "https://boxes.example/2.json")
    with pytest.raises(errors.BuybackDisabledError):
        ready_engine.open_box("alice", box.asset_id, 5)

    # admin paths stay available
    ready_engine.toggle_buyback(authority, False)
    ready_engine.set_min_treasury_balance(authority, 5)
    assert ready_engine.get_global().paused is True

    ready_engine.emergency_pause(authority, False)
    ready_engine.open_box("alice", box.asset_id, 5)


def test_two_step_authority_transfer(ready_engine, authority):
    ready_engine.initiate_authority_transfer(authority, "new-authority")
    assert ready_engine.get_global().pending_authority == "new-authority"
    assert ready_engine.get_global().authority == authority

    with pytest.raises(errors.UnauthorizedError):
        ready_engine.accept_authority("mallory")

    g = ready_engine.accept_authority("new-authority")
    assert g.authority == "new-authority"
    assert g.pending_authority is None

    with pytest.raises(errors.UnauthorizedError):
        ready_engine.emergency_pause(authority, True)
    ready_engine.emergency_pause("new-authority", True)


def test_accept_without_pending_transfer(ready_engine, authority):
    with pytest.raises(errors.UnauthorizedError):
        ready_engine.accept_authority(authority)


# ─── Treasury ───

def test_deposit_and_withdraw_treasury(ready_engine, authority, fund):
    fund("donor", 500)
    assert ready_engine.deposit_treasury("donor", 500) == TREASURY_SEED + 500
    assert ready_engine.balance_of("donor") == 0

    remaining = ready_engine.withdraw_treasury(authority, "ops", 1_000_000)
    assert remaining == TREASURY_SEED + 500 - 1_000_000
    assert ready_engine.balance_of("ops") == 1_000_000


def test_withdraw_cannot_breach_floor(ready_engine, authority):
    limit = TREASURY_SEED - config.DEFAULT_MIN_TREASURY_BALANCE
    with pytest.raises(errors.TreasuryInsufficientError):
        ready_engine.withdraw_treasury(authority, "ops", limit + 1)
    ready_engine.withdraw_treasury(authority, "ops", limit)
    assert ready_engine.treasury_balance() == config.DEFAULT_MIN_TREASURY_BALANCE


def test_deposit_without_funds(ready_engine):
    with pytest.raises(errors.InsufficientFundsError):
        ready_engine.deposit_treasury("pauper", 10)
    assert ready_engine.treasury_balance() == TREASURY_SEED


# ─── Batch publication ───

def test_publish_batch_validation(ready_engine, authority, clock, catalog, catalog_leaves):
    root = build_root(catalog_leaves)
    with pytest.raises(errors.InvalidMetadataError):
        ready_engine.publish_batch(authority, 1, config.ZERO_HASH, clock.now, 5)
    with pytest.raises(errors.InvalidPoolSizeError):
        ready_engine.publish_batch(authority, 1, root, clock.now, 0)
    with pytest.raises(errors.InvalidTimestampError):
        ready_engine.publish_batch(authority, 1, root,
                                   clock.now + config.SNAPSHOT_FUTURE_TOLERANCE_SECONDS + 1, 5)
    with pytest.raises(errors.InvalidBatchIdError):
        ready_engine.publish_batch(authority, -1, root, clock.now, 5)
    with pytest.raises(errors.InvalidMetadataError):
        ready_engine.publish_batch(authority, 1, root, clock.now, 5, "LOTTERY")
    with pytest.raises(errors.InvalidMetadataError):
        ready_engine.publish_batch(authority, 1, root, clock.now, 5, "DIRECT_REVEAL")
    with pytest.raises(errors.InvalidMetadataError):
        ready_engine.publish_batch(authority, 1, root, clock.now, 4, "DIRECT_REVEAL", catalog)
    with pytest.raises(errors.InvalidMerkleProofError):
        ready_engine.publish_batch(authority, 1, keccak256(b"other"), clock.now, 5, "DIRECT_REVEAL", catalog)

    assert ready_engine.get_global().current_batch == 0


def test_snapshot_within_tolerance_accepted(ready_engine, authority, clock, catalog_leaves):
    batch = ready_engine.publish_batch(authority, 1, build_root(catalog_leaves),
                                       clock.now + config.SNAPSHOT_FUTURE_TOLERANCE_SECONDS, 5)
    assert batch.snapshot_time == clock.now + config.SNAPSHOT_FUTURE_TOLERANCE_SECONDS


def test_republish_before_opens_keeps_counters(ready_engine, authority, assign_batch, clock):
    ready_engine.mint_box("alice", assign_batch.batch_id, "https://boxes.example/1.json")
    new_root = keccak256(b"corrected snapshot")

    batch = ready_engine.publish_batch(authority, assign_batch.batch_id, new_root, clock.now, 8)
    assert batch.merkle_root == new_root
    assert batch.total_items == 8
    assert batch.boxes_minted == 1
    assert ready_engine.get_global().current_batch == 1


def test_republish_after_open_is_locked(ready_engine, authority, revealed_box, assign_batch, clock):
    with pytest.raises(errors.BatchRootLockedError):
        ready_engine.publish_batch(authority, assign_batch.batch_id, keccak256(b"x"), clock.now, 5)
    assert ready_engine.get_batch(assign_batch.batch_id).merkle_root == assign_batch.merkle_root


def test_get_unknown_batch(ready_engine):
    with pytest.raises(errors.RecordNotFoundError):
        ready_engine.get_batch(404)


# ─── Oracle prices ───

def test_set_price_creates_then_updates(ready_engine, oracle_key, oracle_id, clock):
    first = ready_engine.set_price(oracle_id, ITEM, 500, clock.now,
                                   sign_price(oracle_key, ITEM, 500, clock.now))
    assert first.update_count == 1
    assert first.oracle == oracle_id

    clock.advance(10)
    second = ready_engine.set_price(oracle_id, ITEM, 700, clock.now,
                                    sign_price(oracle_key, ITEM, 700, clock.now))
    assert second.update_count == 2
    assert ready_engine.get_price(ITEM).price == 700


def test_set_price_rejects_forged_signature(ready_engine, oracle_id, clock):
    forger = nacl.signing.SigningKey.generate()
    with pytest.raises(errors.InvalidSignatureError):
        ready_engine.set_price(oracle_id, ITEM, 500, clock.now, sign_price(forger, ITEM, 500, clock.now))
    with pytest.raises(errors.InvalidSignatureError):
        ready_engine.set_price(oracle_id, ITEM, 500, clock.now, bytes(64))
    assert ready_engine.get_price(ITEM) is None


def test_set_price_signature_binds_price(ready_engine, oracle_key, oracle_id, clock):
    signature = sign_price(oracle_key, ITEM, 500, clock.now)
    with pytest.raises(errors.InvalidSignatureError):
        ready_engine.set_price(oracle_id, ITEM, 5_000, clock.now, signature)


def test_set_price_caller_and_timestamp_guards(ready_engine, oracle_key, oracle_id, clock):
    now = clock.now
    with pytest.raises(errors.UnauthorizedError):
        ready_engine.set_price("mallory", ITEM, 500, now, sign_price(oracle_key, ITEM, 500, now))
    with pytest.raises(errors.InvalidTimestampError):
        ready_engine.set_price(oracle_id, ITEM, 500, now + 1, sign_price(oracle_key, ITEM, 500, now + 1))
    with pytest.raises(errors.PriceStaleError):
        ready_engine.set_price(oracle_id, ITEM, 500, now - 600, sign_price(oracle_key, ITEM, 500, now - 600))
    with pytest.raises(errors.InvalidAmountError):
        ready_engine.set_price(oracle_id, ITEM, 0, now, sign_price(oracle_key, ITEM, 0, now))
    with pytest.raises(errors.InvalidMetadataError):
        ready_engine.set_price(oracle_id, config.ZERO_HASH, 500, now, bytes(64))


def test_set_price_rejects_older_quote(ready_engine, oracle_key, oracle_id, clock):
    ready_engine.set_price(oracle_id, ITEM, 500, clock.now, sign_price(oracle_key, ITEM, 500, clock.now))
    older = clock.now - 10
    with pytest.raises(errors.InvalidTimestampError):
        ready_engine.set_price(oracle_id, ITEM, 400, older, sign_price(oracle_key, ITEM, 400, older))


def test_set_price_rejects_replayed_quote(ready_engine, oracle_key, oracle_id, clock):
    signature = sign_price(oracle_key, ITEM, 500, clock.now)
    ready_engine.set_price(oracle_id, ITEM, 500, clock.now, signature)

    clock.advance(5)
    with pytest.raises(errors.InvalidTimestampError):
        ready_engine.set_price(oracle_id, ITEM, 500, clock.now - 5, signature)
    assert ready_engine.get_price(ITEM).update_count == 1


def test_set_price_without_oracle(engine, authority, clock):
    engine.initialize(authority, "", "USDC")
    with pytest.raises(errors.OracleNotSetError):
        engine.set_price("", ITEM, 500, clock.now, bytes(64))


# ─── Recovery ───

def test_cancel_open_request(ready_engine, assign_batch, authority, ledger, clock):
    box = ready_engine.mint_box("alice", assign_batch.batch_id, "https://boxes.example/1.json")
    first = ready_engine.open_box("alice", box.asset_id, 5)

    with pytest.raises(errors.UnauthorizedError):
        ready_engine.cancel_open_request("alice", box.asset_id)

    cancelled = ready_engine.cancel_open_request(authority, box.asset_id)
    assert cancelled.request_id == first.request_id
    assert ledger.get_pending(box.asset_id) is None
    assert ready_engine.box_stage(box.asset_id) == "Minted"

    clock.advance(5)
    second = ready_engine.open_box("alice", box.asset_id, 5)
    assert second.request_id != first.request_id

    with pytest.raises(errors.RecordNotFoundError):
        ready_engine.cancel_open_request(authority, "no-such-box")

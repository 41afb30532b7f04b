import pytest

from Loot_Ledger.loot_shared import config, errors
from Loot_Ledger.loot_db.collaborators import FundsLedger


def _balance(ledger, funds, account):
    return ledger.run(lambda uow: funds.balance_of(uow, account), "balance_of")


def _asset(ledger, assets, asset_id):
    return ledger.run(lambda uow: assets.get_asset(uow, asset_id), "get_asset")


# ─── Funds ───

def test_unknown_account_has_zero_balance(ledger, funds):
    assert _balance(ledger, funds, "nobody") == 0


def test_transfer_moves_funds(ledger, funds, fund):
    fund("alice", 500)
    ledger.run(lambda uow: funds.transfer_funds(uow, "alice", "bob", 200), "transfer")
    assert _balance(ledger, funds, "alice") == 300
    assert _balance(ledger, funds, "bob") == 200


def test_transfer_more_than_balance_fails(ledger, funds, fund):
    fund("alice", 100)
    with pytest.raises(errors.InsufficientFundsError):
        ledger.run(lambda uow: funds.transfer_funds(uow, "alice", "bob", 101), "transfer")
    assert _balance(ledger, funds, "alice") == 100
    assert _balance(ledger, funds, "bob") == 0


def test_transfer_to_self_is_noop(ledger, funds, fund):
    fund("alice", 100)
    ledger.run(lambda uow: funds.transfer_funds(uow, "alice", "alice", 60), "transfer")
    assert _balance(ledger, funds, "alice") == 100


def test_negative_amounts_rejected(ledger, funds):
    with pytest.raises(errors.InvalidAmountError):
        ledger.run(lambda uow: funds.mint_funds(uow, "alice", -1), "mint_funds")
    with pytest.raises(errors.InvalidAmountError):
        ledger.run(lambda uow: funds.transfer_funds(uow, "alice", "bob", -1), "transfer")


def test_balance_overflow_rejected(ledger, funds, fund):
    fund("alice", config.U64_MAX)
    with pytest.raises(errors.ArithmeticOverflowError):
        fund("alice", 1)
    fund("bob", 1)
    with pytest.raises(errors.ArithmeticOverflowError):
        ledger.run(lambda uow: funds.transfer_funds(uow, "bob", "alice", 1), "transfer")


def test_balances_are_per_asset(ledger, funds, fund):
    fund("alice", 100)
    other = FundsLedger("EURC")
    assert _balance(ledger, other, "alice") == 0


# ─── Assets ───

def test_mint_and_burn_asset(ledger, assets):
    asset_id = ledger.run(lambda uow: assets.mint_asset(uow, "alice", "Sword", "https://x/1", False), "mint")
    record = _asset(ledger, assets, asset_id)
    assert record.owner == "alice"
    assert record.frozen is False

    ledger.run(lambda uow: assets.burn_asset(uow, asset_id, "alice"), "burn")
    assert _asset(ledger, assets, asset_id) is None


def test_burn_by_non_owner_fails(ledger, assets):
    asset_id = ledger.run(lambda uow: assets.mint_asset(uow, "alice", "Sword", "https://x/1", False), "mint")
    with pytest.raises(errors.NotOwnedError):
        ledger.run(lambda uow: assets.burn_asset(uow, asset_id, "bob"), "burn")
    assert _asset(ledger, assets, asset_id) is not None


def test_frozen_asset_must_be_unfrozen_before_burn(ledger, assets):
    asset_id = ledger.run(lambda uow: assets.mint_asset(uow, "alice", "Sword", "https://x/1", True), "mint")
    with pytest.raises(errors.AssetFrozenError):
        ledger.run(lambda uow: assets.burn_asset(uow, asset_id, "alice"), "burn")

    def _unfreeze_then_burn(uow):
        assets.set_frozen(uow, asset_id, False)
        assets.burn_asset(uow, asset_id, "alice")

    ledger.run(_unfreeze_then_burn, "burn")
    assert _asset(ledger, assets, asset_id) is None


@pytest.mark.parametrize("name,uri", [
    ("", "https://x/1"),
    ("x" * (config.MAX_ITEM_NAME_LEN + 1), "https://x/1"),
    ("Sword", ""),
    ("Sword", "u" * (config.MAX_METADATA_URI_LEN + 1)),
])
def test_mint_rejects_bad_metadata(ledger, assets, name, uri):
    with pytest.raises(errors.InvalidMetadataError):
        ledger.run(lambda uow: assets.mint_asset(uow, "alice", name, uri, False), "mint")

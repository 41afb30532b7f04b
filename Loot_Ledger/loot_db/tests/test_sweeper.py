import pytest

from Loot_Ledger.loot_shared import config, errors
from Loot_Ledger.loot_shared.types import SweepResult
from Loot_Ledger.loot_db.sweeper import PendingSweeper


@pytest.fixture
def sweeper(ready_engine, ledger, authority):
    return PendingSweeper(ready_engine, ledger, authority)


@pytest.fixture
def open_box(ready_engine, assign_batch):
    def _open(owner):
        box = ready_engine.mint_box(owner, assign_batch.batch_id, "https://boxes.example/1.json")
        ready_engine.open_box(owner, box.asset_id, assign_batch.total_items)
        return box.asset_id
    return _open


def test_fresh_requests_are_kept(sweeper, open_box, ledger):
    asset_id = open_box("alice")
    result = sweeper.sweep()
    assert isinstance(result, SweepResult)
    assert result.requests_scanned == 1
    assert result.requests_cancelled == 0
    assert ledger.get_pending(asset_id) is not None


def test_stale_requests_are_cancelled(sweeper, open_box, ready_engine, ledger, clock):
    asset_id = open_box("alice")
    clock.advance(config.STALE_OPEN_REQUEST_SECONDS + 1)

    result = sweeper.sweep()
    assert result.requests_cancelled == 1
    assert result.asset_ids == [asset_id]
    assert ledger.get_pending(asset_id) is None
    assert ready_engine.box_stage(asset_id) == "Minted"


def test_fulfilled_requests_are_not_swept(sweeper, open_box, ready_engine, ledger, clock,
                                          authority, randomness):
    asset_id = open_box("alice")
    pending = ledger.get_pending(asset_id)
    ready_engine.fulfill_randomness(authority, asset_id, pending.request_id, randomness)
    clock.advance(config.STALE_OPEN_REQUEST_SECONDS + 1)

    result = sweeper.sweep()
    assert result.requests_scanned == 1
    assert result.requests_cancelled == 0


def test_dry_run_does_not_cancel(sweeper, open_box, ledger, clock):
    first = open_box("alice")
    second = open_box("bob")
    clock.advance(config.STALE_OPEN_REQUEST_SECONDS + 1)

    result = sweeper.dry_run()
    assert result.requests_cancelled == 2
    assert sorted(result.asset_ids) == sorted([first, second])
    assert ledger.get_pending(first) is not None
    assert ledger.get_pending(second) is not None


def test_custom_max_age(sweeper, open_box, clock):
    open_box("alice")
    clock.advance(120)
    assert sweeper.dry_run(max_age_seconds=60).requests_cancelled == 1
    assert sweeper.dry_run(max_age_seconds=600).requests_cancelled == 0


def test_sweep_requires_authority(ready_engine, ledger, open_box, clock):
    open_box("alice")
    clock.advance(config.STALE_OPEN_REQUEST_SECONDS + 1)
    rogue = PendingSweeper(ready_engine, ledger, "mallory")
    with pytest.raises(errors.UnauthorizedError):
        rogue.sweep()

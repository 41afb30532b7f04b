import logging
from typing import TYPE_CHECKING

from Loot_Ledger.loot_shared import config, errors
from Loot_Ledger.loot_shared.randomness import is_fulfilled
from Loot_Ledger.loot_shared.types import SweepResult, VrfPending
from Loot_Ledger.loot_db.ledger import LedgerStore

if TYPE_CHECKING:
    from Loot_Ledger.loot_engine.lifecycle import LifecycleEngine

logger = logging.getLogger(__name__)


class PendingSweeper:
    """Finds randomness requests the oracle never answered and cancels them.

    Cancellation goes through the engine's ``cancel_open_request`` so the
    authority check and the atomic delete are the same as for a manual cancel.
    """

    def __init__(self, engine: "LifecycleEngine", ledger: LedgerStore, authority: str):
        self.engine = engine
        self.ledger = ledger
        self.authority = authority

    def _is_stale(self, pending: VrfPending, now: int, max_age_seconds: int) -> bool:
        if is_fulfilled(pending.randomness):
            return False
        return now - pending.request_time > max_age_seconds

    def _stale_requests(self, max_age_seconds: int) -> tuple[int, list[VrfPending]]:
        now = self.ledger.clock()
        scanned = 0
        stale = []
        for pending in self.ledger.iter_pending():
            scanned += 1
            if self._is_stale(pending, now, max_age_seconds):
                stale.append(pending)
        return scanned, stale

    def sweep(self, max_age_seconds: int = config.STALE_OPEN_REQUEST_SECONDS) -> SweepResult:
        scanned, stale = self._stale_requests(max_age_seconds)
        cancelled = []

        for pending in stale:
            try:
                self.engine.cancel_open_request(self.authority, pending.asset_id)
            except errors.RecordNotFoundError:
                # revealed or cancelled since the scan
                continue
            cancelled.append(pending.asset_id)

        if cancelled:
            logger.info("sweep cancelled %d of %d open requests", len(cancelled), scanned)

        return SweepResult(
            requests_scanned=scanned,
            requests_cancelled=len(cancelled),
            asset_ids=cancelled,
        )

    def dry_run(self, max_age_seconds: int = config.STALE_OPEN_REQUEST_SECONDS) -> SweepResult:
        scanned, stale = self._stale_requests(max_age_seconds)
        return SweepResult(
            requests_scanned=scanned,
            requests_cancelled=len(stale),
            asset_ids=[p.asset_id for p in stale],
        )

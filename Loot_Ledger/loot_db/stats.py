from Loot_Ledger.loot_shared import config, errors
from Loot_Ledger.loot_shared.types import BatchSummary, ConsistencyReport, GlobalConfig, StorageReport
from Loot_Ledger.loot_db.collaborators import FundsLedger
from Loot_Ledger.loot_db.ledger import LedgerStore, treasury_account

_REPORTED_LABELS = (
    config.GLOBAL_LABEL,
    config.BATCH_LABEL,
    config.BOX_LABEL,
    config.VRF_PENDING_LABEL,
    config.INVENTORY_LABEL,
    config.PRICE_LABEL,
)


class LedgerReporter:
    def __init__(self, ledger: LedgerStore, funds: FundsLedger):
        self.ledger = ledger
        self.funds = funds

    def get_global_report(self) -> GlobalConfig:
        g = self.ledger.get_global()
        if g is None:
            raise errors.NotInitializedError()
        return g

    def get_batch_summaries(self) -> list[BatchSummary]:
        summaries = [
            BatchSummary(
                batch_id=batch.batch_id,
                claim_strategy=batch.claim_strategy,
                total_items=batch.total_items,
                boxes_minted=batch.boxes_minted,
                boxes_opened=batch.boxes_opened,
            )
            for batch in self.ledger.iter_batches()
        ]
        return sorted(summaries, key=lambda s: s.batch_id)

    def get_treasury_balance(self) -> int:
        return self.ledger.run(lambda uow: self.funds.balance_of(uow, treasury_account()),
                               "get_treasury_balance")

    def get_storage_usage(self) -> StorageReport:
        record_count: dict[str, int] = {}
        per_label: dict[str, int] = {}

        for label in _REPORTED_LABELS:
            count = self.ledger.count_records(label)
            record_count[label] = count
            per_label[label] = count * config.RECORD_SIZE_BYTES[label]

        # item lists are variable length
        item_count = sum(len(batch.items) for batch in self.ledger.iter_batches())
        per_label[config.BATCH_LABEL] += item_count * config.BATCH_ITEM_SIZE_BYTES

        return StorageReport(
            total_bytes=sum(per_label.values()),
            per_label=per_label,
            record_count=record_count,
        )

    def check_consistency(self) -> ConsistencyReport:
        """total_boxes_minted on the global config must equal the sum over batches."""
        g = self.get_global_report()
        batch_total = sum(batch.boxes_minted for batch in self.ledger.iter_batches())
        return ConsistencyReport(
            total_boxes_minted=g.total_boxes_minted,
            batch_boxes_minted=batch_total,
            consistent=g.total_boxes_minted == batch_total,
        )

    def get_full_dashboard(self) -> dict:
        return {
            "global": self.get_global_report(),
            "batches": self.get_batch_summaries(),
            "treasury_balance": self.get_treasury_balance(),
            "storage": self.get_storage_usage(),
            "consistency": self.check_consistency(),
        }

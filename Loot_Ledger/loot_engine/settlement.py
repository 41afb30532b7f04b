"""
Buyback pricing and treasury settlement.

payout = market_price - floor(market_price * spread_bps / 10_000)

Every amount is an unsigned 64-bit integer; any step leaving that range raises
ArithmeticOverflowError and aborts the surrounding unit of work. The solvency
check reads the treasury balance through the same UnitOfWork that performs
the debit, so no other settlement can commit between check and transfer.
"""

import logging
from typing import Optional

from Loot_Ledger.loot_shared import config, errors
from Loot_Ledger.loot_shared.types import GlobalConfig, Payout, PriceStore, SettlementReceipt
from Loot_Ledger.loot_db.collaborators import FundsLedger
from Loot_Ledger.loot_db.ledger import UnitOfWork, treasury_account

logger = logging.getLogger(__name__)


# ─── Checked u64 arithmetic ───

def _in_range(value: int, operation: str) -> int:
    if value < 0 or value > config.U64_MAX:
        raise errors.ArithmeticOverflowError(operation)
    return value


def checked_add(a: int, b: int, operation: str = "add") -> int:
    return _in_range(a + b, operation)


def checked_sub(a: int, b: int, operation: str = "sub") -> int:
    return _in_range(a - b, operation)


def checked_mul(a: int, b: int, operation: str = "mul") -> int:
    return _in_range(a * b, operation)


# ─── Pure guards ───

def compute_payout(market_price: int, spread_bps: int = config.BUYBACK_SPREAD_BPS) -> Payout:
    _in_range(market_price, "compute_payout")
    spread_fee = checked_mul(market_price, spread_bps, "compute_payout") // config.BPS_DENOMINATOR
    payout = checked_sub(market_price, spread_fee, "compute_payout")
    return Payout(market_price=market_price, spread_fee=spread_fee, payout=payout)


def check_slippage(payout: int, min_price: int) -> None:
    if payout < min_price:
        raise errors.SlippageExceededError(payout, min_price)


def is_price_stale(price_timestamp: int, now: int,
                   max_age: int = config.MAX_PRICE_AGE_SECONDS) -> bool:
    return now - price_timestamp > max_age


def check_price_fresh(price: Optional[PriceStore], now: int,
                      max_age: int = config.MAX_PRICE_AGE_SECONDS) -> PriceStore:
    if price is None:
        raise errors.PriceStaleError(None, now)
    if is_price_stale(price.timestamp, now, max_age):
        raise errors.PriceStaleError(price.timestamp, now)
    return price


def check_solvency(treasury_balance: int, amount: int, floor: int) -> None:
    """Treasury must keep at least ``floor`` after paying ``amount``."""
    required = checked_add(amount, floor, "check_solvency")
    if treasury_balance < required:
        raise errors.TreasuryInsufficientError(treasury_balance, amount, floor)


class SettlementEngine:
    def __init__(self, funds: FundsLedger,
                 spread_bps: int = config.BUYBACK_SPREAD_BPS,
                 max_price_age: int = config.MAX_PRICE_AGE_SECONDS):
        self.funds = funds
        self.spread_bps = spread_bps
        self.max_price_age = max_price_age

    def treasury_balance(self, uow: UnitOfWork) -> int:
        return self.funds.balance_of(uow, treasury_account())

    def resolve_market_price(self, uow: UnitOfWork, price_key: bytes,
                             quoted_price: Optional[int]) -> int:
        """Caller quote if given, otherwise the oracle price (must be fresh)."""
        if quoted_price is not None:
            return quoted_price
        price = check_price_fresh(uow.get_price(price_key), uow.now, self.max_price_age)
        return price.price

    def settle(self, uow: UnitOfWork, g: GlobalConfig, seller: str, asset_id: str,
               inventory_hash: bytes, market_price: int, min_price: int) -> SettlementReceipt:
        """Pay ``seller`` for one item and update buyback statistics on ``g``.

        The caller persists ``g``; nothing here is visible until the unit of
        work commits.
        """
        if market_price <= 0:
            raise errors.SlippageExceededError(0, min_price)

        quote = compute_payout(market_price, self.spread_bps)
        check_slippage(quote.payout, min_price)

        treasury = treasury_account()
        balance = self.funds.balance_of(uow, treasury)
        check_solvency(balance, quote.payout, g.min_treasury_balance)

        total_buybacks = checked_add(g.total_buybacks, 1, "total_buybacks")
        total_volume = checked_add(g.total_buyback_volume, quote.payout, "total_buyback_volume")

        self.funds.transfer_funds(uow, treasury, seller, quote.payout)
        g.total_buybacks = total_buybacks
        g.total_buyback_volume = total_volume

        return SettlementReceipt(
            asset_id=asset_id,
            seller=seller,
            inventory_hash=inventory_hash,
            market_price=quote.market_price,
            spread_fee=quote.spread_fee,
            payout=quote.payout,
            treasury_after=balance - quote.payout,
            redeemed_at=uow.now,
        )

    def deposit(self, uow: UnitOfWork, depositor: str, amount: int) -> int:
        if amount <= 0:
            raise errors.InvalidAmountError(amount, "deposit_treasury")
        treasury = treasury_account()
        new_balance = checked_add(self.funds.balance_of(uow, treasury), amount, "deposit_treasury")
        self.funds.transfer_funds(uow, depositor, treasury, amount)
        return new_balance

    def withdraw(self, uow: UnitOfWork, g: GlobalConfig, recipient: str, amount: int) -> int:
        if amount <= 0:
            raise errors.InvalidAmountError(amount, "withdraw_treasury")
        treasury = treasury_account()
        balance = self.funds.balance_of(uow, treasury)
        check_solvency(balance, amount, g.min_treasury_balance)
        self.funds.transfer_funds(uow, treasury, recipient, amount)
        return balance - amount

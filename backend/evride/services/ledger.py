from __future__ import annotations

import math
from dataclasses import dataclass

from sqlalchemy.orm import Session

from ..fares import Tariff
from ..models import User
from ..services.errors import ErrorKind, Outcome
from ..services.eventlog import log_event
from ..utils import round2


@dataclass
class Settlement:
    original_fare: float
    final_fare: float
    points_redeemed: int
    points_earned: int
    new_wallet_balance: float
    new_points_balance: int


@dataclass
class TopUpResult:
    wallet_balance: float
    amount_added: float


class WalletLedger:
    """Wallet and reward-point bookkeeping for a single user row.

    Callers are expected to hold the user row locked; the ledger only checks
    and mutates the in-session object and never commits.
    """

    def __init__(self, db: Session, tariff: Tariff) -> None:
        self.db = db
        self.tariff = tariff

    def quote(self, user: User, fare: float) -> Settlement:
        points_redeemed = min(max(user.reward_points, 0), math.floor(fare))
        final_fare = round2(fare - points_redeemed)
        points_earned = math.floor(final_fare * self.tariff.cashback_rate)
        return Settlement(
            original_fare=fare,
            final_fare=final_fare,
            points_redeemed=points_redeemed,
            points_earned=points_earned,
            new_wallet_balance=round2(user.wallet_balance - final_fare),
            new_points_balance=user.reward_points - points_redeemed + points_earned,
        )

    def settle(self, user: User, fare: float) -> Outcome[Settlement]:
        settlement = self.quote(user, fare)
        if user.wallet_balance < settlement.final_fare:
            return Outcome.failure(
                ErrorKind.insufficient_funds,
                f"Insufficient wallet balance. Required: {settlement.final_fare:.2f}, "
                f"available: {user.wallet_balance:.2f}. Please add money to continue.",
            )

        user.wallet_balance = settlement.new_wallet_balance
        user.reward_points = settlement.new_points_balance
        self.db.add(user)

        log_event(
            self.db,
            component="wallet",
            level="info",
            message="Fare settled",
            payload={
                "user_id": user.id,
                "fare": settlement.original_fare,
                "final_fare": settlement.final_fare,
                "points_redeemed": settlement.points_redeemed,
                "points_earned": settlement.points_earned,
            },
        )
        return Outcome.success(settlement)

    def top_up(self, user: User, amount: float) -> Outcome[TopUpResult]:
        if amount is None or math.isnan(amount) or amount <= 0:
            return Outcome.failure(ErrorKind.validation_error, "Please provide a valid amount")
        if amount > self.tariff.max_wallet_top_up:
            return Outcome.failure(
                ErrorKind.validation_error,
                f"Maximum amount per transaction is {self.tariff.max_wallet_top_up:.2f}",
            )

        user.wallet_balance = round2(user.wallet_balance + amount)
        self.db.add(user)

        log_event(
            self.db,
            component="wallet",
            level="info",
            message="Wallet topped up",
            payload={"user_id": user.id, "amount": amount},
        )
        return Outcome.success(TopUpResult(wallet_balance=user.wallet_balance, amount_added=amount))

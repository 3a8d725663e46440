from dataclasses import dataclass
from datetime import timedelta

from pacmac.core.config import config


@dataclass(frozen=True)
class FundHoldPolicy:
    """
    How long a seller payout is held after a transaction completes.
    New sellers get a longer hold for their first few sales.
    """

    initial_transaction_count: int = 5
    initial_hold: timedelta = timedelta(hours=24)
    standard_hold: timedelta = timedelta(minutes=15)

    def hold_for(self, completed_sales: int) -> timedelta:
        """
        :param completed_sales: Sales the seller completed before this one.
        """
        if completed_sales < self.initial_transaction_count:
            return self.initial_hold
        return self.standard_hold

    @classmethod
    def from_settings(cls) -> "FundHoldPolicy":
        return cls(
            initial_transaction_count=config.fund_hold_initial_transactions,
            initial_hold=timedelta(hours=config.fund_hold_initial_hours),
            standard_hold=timedelta(minutes=config.fund_hold_standard_minutes),
        )

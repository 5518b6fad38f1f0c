from decimal import Decimal


class LaunchpadError(Exception):
    pass


class InvalidInputError(LaunchpadError, ValueError):
    pass


class SettlementError(LaunchpadError):
    pass


class InsufficientFundsError(SettlementError):
    def __init__(self, balance: Decimal, required: Decimal) -> None:
        super().__init__(
            f"Insufficient treasury balance: {balance} SOL < {required} SOL required"
        )
        self.balance = balance
        self.required = required


class PaymentError(SettlementError):
    def __init__(
        self,
        message: str,
        signature: str | None = None,
        *,
        outcome_unknown: bool = False,
    ) -> None:
        super().__init__(message)
        self.signature = signature
        self.outcome_unknown = outcome_unknown


class DistributionRecordingError(SettlementError):
    """Payment landed on-chain but the ledger write failed. Needs manual reconciliation."""

    def __init__(self, message: str, *, signature: str, amount: Decimal) -> None:
        super().__init__(message)
        self.signature = signature
        self.amount = amount

from typing import Optional


EXIT_OK = 0
EXIT_USAGE = 1
EXIT_IO_ERROR = 2
EXIT_INPUT_FORMAT = 3
EXIT_LEDGER_ERROR = 4


class LedgerError(Exception):
    """Base class for every transaction the ledger refuses to apply."""

    error_code = "LEDGER_ERROR"
    exit_code = EXIT_LEDGER_ERROR


class UnknownClientError(LedgerError):
    error_code = "UNKNOWN_CLIENT"

    def __init__(self, client: int):
        self.client = client
        super().__init__(f"Unknown client (client id: {client})")


class UnknownTransactionError(LedgerError):
    error_code = "UNKNOWN_TRANSACTION"

    def __init__(self, tx: int):
        self.tx = tx
        super().__init__(f"Unknown transaction (tx: {tx})")


class InvalidAmountError(LedgerError):
    error_code = "INVALID_AMOUNT"

    def __init__(self, tx: int, amount: Optional[float]):
        self.tx = tx
        self.amount = amount
        super().__init__(f"Invalid amount for tx {tx}: {amount}")


class AmountOverflowError(LedgerError):
    """Raised when an addition is absorbed by the float range of the account."""

    error_code = "AMOUNT_OVERFLOW"

    def __init__(self, client: int, tx: int):
        self.client = client
        self.tx = tx
        super().__init__(f"Account amount is too large (client id: {client}, tx: {tx})")


class NotDisputedError(LedgerError):
    error_code = "NOT_DISPUTED"

    def __init__(self, tx: int):
        self.tx = tx
        super().__init__(f"Transaction {tx} is not disputed")


class AccountLockedError(LedgerError):
    error_code = "ACCOUNT_LOCKED"

    def __init__(self, client: int):
        self.client = client
        super().__init__(f"Account (client id: {client}) is locked")


class DuplicateTransactionError(LedgerError):
    error_code = "DUPLICATE_TRANSACTION"

    def __init__(self, tx: int):
        self.tx = tx
        super().__init__(f"Non unique transaction (tx: {tx})")


class InsufficientFundsError(LedgerError):
    error_code = "INSUFFICIENT_FUNDS"

    def __init__(self, client: int, amount: float, available: float):
        self.client = client
        self.amount = amount
        self.available = available
        super().__init__(
            f"Insufficient funds (client id: {client}, requested: {amount}, available: {available})"
        )


class InputFormatError(Exception):
    """A record of the input table could not be parsed."""

    error_code = "INPUT_FORMAT_ERROR"
    exit_code = EXIT_INPUT_FORMAT

    def __init__(self, line: int, detail: str):
        self.line = line
        self.detail = detail
        super().__init__(f"line {line}: {detail}")

"""
Ledger Error Taxonomy

Every failure a ledger operation can report. Each error carries a stable
``code`` so callers (the HTTP layer, retry helpers) can branch on the kind
of failure without parsing messages.
"""

from typing import Optional


class LedgerError(Exception):
    """Base class for all ledger failures"""

    code = "ledger_error"

    def __init__(self, message: str, account_number: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.account_number = account_number


class InvalidAmountError(LedgerError):
    """Amount is not a positive integer"""
    code = "invalid_amount"

    def __init__(self, amount):
        super().__init__(f"Amount must be a positive integer, got {amount!r}")
        self.amount = amount


class InvalidNameError(LedgerError):
    """Account holder name is missing or blank"""
    code = "invalid_name"


class AccountNotFoundError(LedgerError):
    code = "account_not_found"

    def __init__(self, account_number: int, role: str = "Account"):
        super().__init__(f"{role} {account_number} not found", account_number)


class SenderNotFoundError(AccountNotFoundError):
    code = "sender_not_found"

    def __init__(self, account_number: int):
        super().__init__(account_number, role="Sender account")


class ReceiverNotFoundError(AccountNotFoundError):
    code = "receiver_not_found"

    def __init__(self, account_number: int):
        super().__init__(account_number, role="Receiver account")


class DuplicateAccountError(LedgerError):
    code = "duplicate_account"

    def __init__(self, account_number: int):
        super().__init__(f"Account {account_number} already exists", account_number)


class SameAccountError(LedgerError):
    code = "same_account"

    def __init__(self, account_number: int):
        super().__init__(
            f"Cannot transfer from account {account_number} to itself", account_number
        )


class InsufficientFundsError(LedgerError):
    """Mutation would drive the balance below zero"""
    code = "insufficient_funds"

    def __init__(self, account_number: int, balance: int, amount: int):
        super().__init__(
            f"Insufficient funds in account {account_number}: "
            f"balance {balance}, requested {amount}",
            account_number
        )
        self.balance = balance
        self.amount = amount


class ConflictError(LedgerError):
    """
    Lost an optimistic-concurrency race: the snapshot the operation was
    computed from changed before its commit. Nothing was written.
    """
    code = "conflict"

    def __init__(self, account_number: int):
        super().__init__(
            f"Account {account_number} was modified concurrently, retry the operation",
            account_number
        )


class StorageError(Exception):
    """Backend failure unrelated to optimistic-concurrency conflicts"""

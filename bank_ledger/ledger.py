"""
Ledger Operations Module

Account creation, deposits, withdrawals and transfers as optimistic
transactions: each operation reads a snapshot, computes the new state and
commits conditioned on the snapshot being unchanged. No locks are held
between the read and the commit; a lost race surfaces as ConflictError and
the caller decides whether to retry (see ``retry_on_conflict``).
"""

from typing import Callable, List, Optional, Tuple, TypeVar

from .accounts import Account, AccountStore
from .errors import (
    AccountNotFoundError, ConflictError, DuplicateAccountError,
    InsufficientFundsError, InvalidAmountError, InvalidNameError,
    ReceiverNotFoundError, SameAccountError, SenderNotFoundError
)
from .logging_config import get_logger, log_action
from .storage import CommitResult, DocumentOp, Match, Put


T = TypeVar("T")

logger = get_logger("bank_ledger.ledger")


def validate_amount(amount) -> int:
    """Amounts are positive integers; bools are rejected even though they are ints"""
    if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
        raise InvalidAmountError(amount)
    return amount


def retry_on_conflict(operation: Callable[[], T], retries: int = 3) -> T:
    """
    Run a ledger operation, re-running it after a ConflictError.

    Args:
        operation: Zero-argument callable performing one ledger operation
        retries: How many times to re-run after the first conflict

    Returns:
        The operation's result

    Raises:
        ConflictError: if every attempt lost its race
    """
    attempt = 0
    while True:
        try:
            return operation()
        except ConflictError:
            if attempt >= retries:
                raise
            attempt += 1
            logger.debug(f"Retrying after conflict (attempt {attempt} of {retries})")


class LedgerOperations:
    """
    Mutating ledger operations over an Account Store Adapter
    """

    def __init__(self, accounts: AccountStore):
        self.accounts = accounts

    def create_account(self, name: str, account_number: Optional[int] = None) -> Account:
        """
        Create a new account with a zero balance

        Args:
            name: Account holder name
            account_number: Specific account number (allocated if not provided)

        Returns:
            Created Account
        """
        if not isinstance(name, str) or not name.strip():
            raise InvalidNameError("Account name must be a non-empty string")

        if account_number is None:
            account = Account(self.accounts.next_account_number(), name, 0)
            ops: List[DocumentOp] = [Put(account.account_number, account.to_document())]
        else:
            # Claimed on the counter so generated numbers never reuse it
            if not self.accounts.reserve_account_number(account_number):
                raise DuplicateAccountError(account_number)
            account = Account(account_number, name, 0)
            ops = [
                Match(account_number, None),
                Put(account_number, account.to_document())
            ]

        if self.accounts.commit(ops) is CommitResult.CONFLICT:
            raise DuplicateAccountError(account.account_number)

        log_action(
            logger, "info", f"Account created: {account.account_number}",
            action="account_created", resource=f"account:{account.account_number}",
            extra={"name": name}
        )
        return account

    def get_account(self, account_number: int) -> Account:
        """Current snapshot of an account"""
        account = self.accounts.get(account_number)
        if account is None:
            raise AccountNotFoundError(account_number)
        return account

    def deposit(self, account_number: int, amount: int) -> Account:
        """
        Deposit a positive amount into an existing account

        Returns:
            Account snapshot after the deposit
        """
        amount = validate_amount(amount)
        before = self.accounts.get(account_number)
        if before is None:
            raise AccountNotFoundError(account_number)

        after, ops = self._credit(before, amount)
        self._commit(ops, account_number)

        log_action(
            logger, "info", f"Deposit of {amount} to account {account_number}",
            action="deposit", resource=f"account:{account_number}",
            extra={"amount": amount, "balance": after.balance}
        )
        return after

    def withdraw(self, account_number: int, amount: int) -> Account:
        """
        Withdraw a positive amount; the balance may not fall below zero

        Returns:
            Account snapshot after the withdrawal
        """
        amount = validate_amount(amount)
        before = self.accounts.get(account_number)
        if before is None:
            raise AccountNotFoundError(account_number)

        after, ops = self._debit(before, amount)
        self._commit(ops, account_number)

        log_action(
            logger, "info", f"Withdrawal of {amount} from account {account_number}",
            action="withdraw", resource=f"account:{account_number}",
            extra={"amount": amount, "balance": after.balance}
        )
        return after

    def transfer(self, sender_number: int, receiver_number: int, amount: int) -> Account:
        """
        Move money between two existing accounts in one atomic commit

        Both balance changes land in a single transaction log entry, sender
        pair first, so the audit log can pair them back up.

        Returns:
            Sender account snapshot after the transfer
        """
        amount = validate_amount(amount)
        if sender_number == receiver_number:
            raise SameAccountError(sender_number)

        sender_before = self.accounts.get(sender_number)
        if sender_before is None:
            raise SenderNotFoundError(sender_number)
        receiver_before = self.accounts.get(receiver_number)
        if receiver_before is None:
            raise ReceiverNotFoundError(receiver_number)

        sender_after, debit_ops = self._debit(sender_before, amount)
        _, credit_ops = self._credit(receiver_before, amount)
        self._commit(debit_ops + credit_ops, sender_number)

        log_action(
            logger, "info",
            f"Transfer of {amount} from account {sender_number} to account {receiver_number}",
            action="transfer", resource=f"account:{sender_number}",
            extra={"amount": amount, "receiver": receiver_number,
                   "balance": sender_after.balance}
        )
        return sender_after

    def _credit(self, before: Account, amount: int) -> Tuple[Account, List[DocumentOp]]:
        after = before.with_balance_change(amount)
        return after, [
            Match(before.account_number, before.to_document()),
            Put(after.account_number, after.to_document())
        ]

    def _debit(self, before: Account, amount: int) -> Tuple[Account, List[DocumentOp]]:
        after = before.with_balance_change(-amount)
        if after.balance < 0:
            raise InsufficientFundsError(before.account_number, before.balance, amount)
        return after, [
            Match(before.account_number, before.to_document()),
            Put(after.account_number, after.to_document())
        ]

    def _commit(self, ops: List[DocumentOp], account_number: int) -> None:
        if self.accounts.commit(ops) is CommitResult.CONFLICT:
            log_action(
                logger, "warning", f"Optimistic commit conflict on account {account_number}",
                action="conflict", resource=f"account:{account_number}"
            )
            raise ConflictError(account_number)

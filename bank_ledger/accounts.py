"""
Account Module

The Account record and the Account Store Adapter that wraps the document
store with typed account lookups and conditional commits.
"""

from dataclasses import dataclass, replace
from typing import Any, Dict, List, Optional, Sequence

from .storage import CommitResult, DocumentOp, DocumentStore, TransactionEntry


ACCOUNT_NUMBER_COUNTER = "account_number"


@dataclass(frozen=True)
class Account:
    """
    Bank account snapshot. Balances are whole units and never negative
    after a committed mutation.
    """
    account_number: int
    name: str
    balance: int = 0

    def with_balance_change(self, delta: int) -> 'Account':
        """Copy of this snapshot with ``delta`` added to the balance"""
        return replace(self, balance=self.balance + delta)

    def to_document(self) -> Dict[str, Any]:
        """Convert to the stored document form"""
        return {
            "account_number": self.account_number,
            "name": self.name,
            "balance": self.balance
        }

    @classmethod
    def from_document(cls, data: Dict[str, Any]) -> 'Account':
        """Create instance from a stored document"""
        return cls(
            account_number=int(data["account_number"]),
            name=data["name"],
            balance=int(data["balance"])
        )


class AccountStore:
    """
    Account Store Adapter

    Point-in-time account lookups, atomic conditional commits and the
    ordered transaction log, on top of any DocumentStore backend.
    """

    def __init__(self, store: DocumentStore):
        self.store = store

    def get(self, account_number: int) -> Optional[Account]:
        """Latest committed snapshot of an account, or None"""
        document = self.store.get(account_number)
        if document is None:
            return None
        return Account.from_document(document)

    def commit(self, ops: Sequence[DocumentOp]) -> CommitResult:
        """Apply ops atomically iff every Match holds; never raises on conflict"""
        return self.store.commit(ops)

    def read_log(self) -> List[TransactionEntry]:
        """Snapshot of the full transaction history, oldest first"""
        return self.store.read_log()

    def next_account_number(self) -> int:
        """Allocate a fresh sequential account number"""
        return self.store.next_id(ACCOUNT_NUMBER_COUNTER)

    def reserve_account_number(self, account_number: int) -> bool:
        """Claim a specific account number so it is never generated"""
        return self.store.reserve_id(ACCOUNT_NUMBER_COUNTER, account_number)

    def close(self) -> None:
        self.store.close()

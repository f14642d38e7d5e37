"""
Audit Projector Module

Derives an account's audit log from the store's transaction log. Nothing is
stored: every query replays a snapshot of the log, decodes each entry into a
typed event by the shape of its operations, and renders the events that
touch the requested account as audit records, newest first.
"""

from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Union

from .accounts import AccountStore
from .errors import AccountNotFoundError
from .logging_config import get_logger
from .storage import Match, Put, TransactionEntry


logger = get_logger("bank_ledger.audit")


@dataclass(frozen=True)
class Creation:
    """A batch that brought a new account document into existence"""
    account_number: int


@dataclass(frozen=True)
class BalanceChange:
    """One Match/Put pair on a single account"""
    account_number: int
    before_balance: Optional[int]
    after_balance: Optional[int]

    @property
    def delta(self) -> Optional[int]:
        if self.before_balance is None or self.after_balance is None:
            return None
        return self.after_balance - self.before_balance


@dataclass(frozen=True)
class Transfer:
    """Two Match/Put pairs committed together: sender first, receiver second"""
    sender: BalanceChange
    receiver: BalanceChange


@dataclass(frozen=True)
class Unrecognized:
    """An entry whose operation shape matches none of the known events"""
    sequence_id: int


LogEvent = Union[Creation, BalanceChange, Transfer, Unrecognized]


def _balance(document: Optional[Dict[str, Any]]) -> Optional[int]:
    if not document:
        return None
    balance = document.get("balance")
    if isinstance(balance, bool) or not isinstance(balance, int):
        return None
    return balance


def _decode_pair(match, put) -> Optional[BalanceChange]:
    if not isinstance(match, Match) or not isinstance(put, Put):
        return None
    if match.doc_id != put.doc_id:
        return None
    return BalanceChange(
        account_number=put.doc_id,
        before_balance=_balance(match.expected),
        after_balance=_balance(put.document)
    )


def decode_entry(entry: TransactionEntry) -> LogEvent:
    """
    Classify a transaction log entry by its operation shape

    [Put]                          -> Creation
    [Match(n, None), Put(n)]       -> Creation
    [Match(n), Put(n)]             -> BalanceChange
    [Match(s), Put(s), Match(r), Put(r)] -> Transfer
    anything else                  -> Unrecognized
    """
    ops = entry.operations

    if len(ops) == 1 and isinstance(ops[0], Put):
        return Creation(ops[0].doc_id)

    if len(ops) == 2:
        change = _decode_pair(*ops)
        if change is not None:
            if ops[0].expected is None:
                return Creation(change.account_number)
            return change

    if len(ops) == 4:
        sender = _decode_pair(ops[0], ops[1])
        receiver = _decode_pair(ops[2], ops[3])
        if sender is not None and receiver is not None \
                and sender.account_number != receiver.account_number:
            return Transfer(sender, receiver)

    return Unrecognized(entry.sequence_id)


@dataclass
class AuditRecord:
    """One ledger event as seen from a single account"""
    sequence: int
    description: str
    debit: Optional[int] = None
    credit: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        """Serialise, leaving out whichever of debit/credit is absent"""
        result: Dict[str, Any] = {"sequence": self.sequence}
        if self.debit is not None:
            result["debit"] = self.debit
        if self.credit is not None:
            result["credit"] = self.credit
        result["description"] = self.description
        return result


class AuditProjector:
    """
    Builds per-account audit logs from the transaction log
    """

    def __init__(self, accounts: AccountStore):
        self.accounts = accounts

    def audit_log(self, account_number: int, limit: Optional[int] = None) -> List[AuditRecord]:
        """
        Audit records for an account, newest first

        Args:
            account_number: Account to report on
            limit: Keep only the newest ``limit`` records

        Returns:
            List of AuditRecord; ``sequence`` counts emitted events from 0
            in log order, so the first record carries the highest number
        """
        if self.accounts.get(account_number) is None:
            raise AccountNotFoundError(account_number)

        records: List[AuditRecord] = []
        for entry in self.accounts.read_log():
            event = decode_entry(entry)
            if isinstance(event, Unrecognized):
                logger.debug(f"Skipping unrecognized transaction log entry {event.sequence_id}")
                continue

            record = self._render(event, account_number, len(records))
            if record is not None:
                records.append(record)

        records.reverse()
        if limit is not None and limit > 0:
            records = records[:limit]
        return records

    def _render(self, event: LogEvent, account_number: int, sequence: int) -> Optional[AuditRecord]:
        if isinstance(event, BalanceChange):
            if event.account_number != account_number or not event.delta:
                return None
            if event.delta > 0:
                return AuditRecord(sequence, "deposit", credit=event.delta)
            return AuditRecord(sequence, "withdraw", debit=-event.delta)

        if isinstance(event, Transfer):
            if not event.sender.delta:
                return None
            amount = abs(event.sender.delta)
            if account_number == event.receiver.account_number:
                return AuditRecord(
                    sequence, f"receive from #{event.sender.account_number}", credit=amount
                )
            if account_number == event.sender.account_number:
                return AuditRecord(
                    sequence, f"send to #{event.receiver.account_number}", debit=amount
                )

        # Creations never show up in the audit log
        return None

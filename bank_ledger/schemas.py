"""
Pydantic schemas for API requests and responses
"""

from typing import Optional
from pydantic import BaseModel, ConfigDict, Field, StrictInt

from .accounts import Account
from .audit import AuditRecord


class CreateAccountRequest(BaseModel):
    name: str


class AmountRequest(BaseModel):
    # Sign is checked by the ledger so that it reports InvalidAmount
    amount: StrictInt


class TransferRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    amount: StrictInt
    account_number: StrictInt = Field(..., alias="account-number",
                                      description="Receiving account number")


class AccountModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    account_number: int = Field(..., alias="account-number")
    name: str
    balance: int

    @classmethod
    def from_account(cls, account: Account) -> 'AccountModel':
        return cls(
            account_number=account.account_number,
            name=account.name,
            balance=account.balance
        )


class AuditRecordModel(BaseModel):
    sequence: int
    debit: Optional[int] = None
    credit: Optional[int] = None
    description: str

    @classmethod
    def from_record(cls, record: AuditRecord) -> 'AuditRecordModel':
        return cls(
            sequence=record.sequence,
            debit=record.debit,
            credit=record.credit,
            description=record.description
        )

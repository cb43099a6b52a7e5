"""
Pydantic schemas for API requests and responses
"""

from datetime import datetime
from typing import List
from pydantic import BaseModel, Field

from ..registry import PendingTransaction


class CreateTransactionRequest(BaseModel):
    recipient: str = Field(..., min_length=1, description="Account receiving the funds")
    amount: int = Field(..., description="Positive amount in the smallest denomination")


class ConditionRequest(BaseModel):
    met: bool = Field(..., description="Whether the condition holds")


class TransferRequest(BaseModel):
    to_account: str = Field(..., min_length=1)
    amount: int


class SetAdminRequest(BaseModel):
    new_admin: str = Field(..., min_length=1)


class TransactionModel(BaseModel):
    id: int
    sender: str
    recipient: str
    amount: int
    on_chain_condition_met: bool
    off_chain_condition_met: bool
    conditions_met: bool
    created_at: datetime

    @classmethod
    def from_transaction(cls, transaction: PendingTransaction) -> 'TransactionModel':
        return cls(
            id=transaction.id,
            sender=transaction.sender,
            recipient=transaction.recipient,
            amount=transaction.amount,
            on_chain_condition_met=transaction.on_chain_condition_met,
            off_chain_condition_met=transaction.off_chain_condition_met,
            conditions_met=transaction.conditions_met,
            created_at=transaction.created_at
        )


class TransactionListModel(BaseModel):
    transactions: List[TransactionModel]
    count: int
    next_transaction_id: int

"""
Conditional transaction endpoints
"""

from typing import Optional
from fastapi import APIRouter, Depends, Path, status

from .auth import get_caller, get_escrow_system
from .schemas import (
    CreateTransactionRequest, ConditionRequest,
    TransactionModel, TransactionListModel
)
from ..errors import TransactionNotFound
from ..system import EscrowSystem


router = APIRouter()


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_transaction(
    request: CreateTransactionRequest,
    caller: str = Depends(get_caller),
    system: EscrowSystem = Depends(get_escrow_system)
):
    """Create a conditional transaction with the caller as sender"""
    tx_id = system.registry.create_conditional_transaction(
        sender=caller,
        recipient=request.recipient,
        amount=request.amount
    )
    return {
        "transaction_id": tx_id,
        "message": "Conditional transaction created"
    }


@router.get("", response_model=TransactionListModel)
async def list_transactions(
    sender: Optional[str] = None,
    recipient: Optional[str] = None,
    system: EscrowSystem = Depends(get_escrow_system)
):
    """List pending transactions"""
    transactions = system.registry.list_pending_transactions(sender=sender, recipient=recipient)
    return TransactionListModel(
        transactions=[TransactionModel.from_transaction(t) for t in transactions],
        count=len(transactions),
        next_transaction_id=system.registry.next_transaction_id()
    )


@router.get("/{tx_id}", response_model=TransactionModel)
async def get_transaction(
    tx_id: int = Path(..., ge=0),
    system: EscrowSystem = Depends(get_escrow_system)
):
    """Get a pending transaction"""
    transaction = system.registry.get_transaction(tx_id)
    if transaction is None:
        raise TransactionNotFound(tx_id)
    return TransactionModel.from_transaction(transaction)


@router.put("/{tx_id}/conditions/on-chain")
async def set_on_chain_condition(
    request: ConditionRequest,
    tx_id: int = Path(..., ge=0),
    caller: str = Depends(get_caller),
    system: EscrowSystem = Depends(get_escrow_system)
):
    """Set the on-chain condition (admin only)"""
    system.registry.set_on_chain_condition(caller, tx_id, request.met)
    return {
        "transaction_id": tx_id,
        "on_chain_condition_met": request.met,
        "message": "On-chain condition updated"
    }


@router.put("/{tx_id}/conditions/off-chain")
async def set_off_chain_condition(
    request: ConditionRequest,
    tx_id: int = Path(..., ge=0),
    caller: str = Depends(get_caller),
    system: EscrowSystem = Depends(get_escrow_system)
):
    """Set the off-chain condition (admin only)"""
    system.registry.set_off_chain_condition(caller, tx_id, request.met)
    return {
        "transaction_id": tx_id,
        "off_chain_condition_met": request.met,
        "message": "Off-chain condition updated"
    }


@router.post("/{tx_id}/execute")
async def execute_transaction(
    tx_id: int = Path(..., ge=0),
    caller: str = Depends(get_caller),
    system: EscrowSystem = Depends(get_escrow_system)
):
    """Execute a transaction whose conditions are both met"""
    system.registry.execute_transaction(caller, tx_id)
    return {
        "transaction_id": tx_id,
        "status": "executed",
        "message": "Transaction executed"
    }


@router.post("/{tx_id}/cancel")
async def cancel_transaction(
    tx_id: int = Path(..., ge=0),
    caller: str = Depends(get_caller),
    system: EscrowSystem = Depends(get_escrow_system)
):
    """Cancel a pending transaction (sender only)"""
    system.registry.cancel_transaction(caller, tx_id)
    return {
        "transaction_id": tx_id,
        "status": "cancelled",
        "message": "Transaction cancelled"
    }

"""
Ledger endpoints
"""

from fastapi import APIRouter, Depends

from .auth import get_caller, get_escrow_system
from .schemas import TransferRequest
from ..system import EscrowSystem


router = APIRouter()


@router.get("/accounts")
async def get_balances(system: EscrowSystem = Depends(get_escrow_system)):
    """All known account balances"""
    balances = system.ledger.get_balances()
    return {
        "balances": balances,
        "total_supply": sum(balances.values())
    }


@router.get("/accounts/{account_id}")
async def get_balance(
    account_id: str,
    system: EscrowSystem = Depends(get_escrow_system)
):
    """Balance of one account (0 if never credited)"""
    return {
        "account_id": account_id,
        "balance": system.ledger.balance_of(account_id)
    }


@router.post("/transfer")
async def transfer(
    request: TransferRequest,
    caller: str = Depends(get_caller),
    system: EscrowSystem = Depends(get_escrow_system)
):
    """Transfer funds directly from the caller's account"""
    system.ledger.transfer(caller, request.to_account, request.amount, caller=caller)
    return {
        "from_account": caller,
        "to_account": request.to_account,
        "amount": request.amount,
        "message": "Transfer completed"
    }

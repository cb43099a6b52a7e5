"""
Request dependencies: the escrow system and the calling identity
"""

from typing import Optional
from fastapi import Header, HTTPException, Request, status

from ..system import EscrowSystem


def get_escrow_system(request: Request) -> EscrowSystem:
    """The EscrowSystem the application was created with"""
    return request.app.state.escrow_system


def get_caller(x_caller_id: Optional[str] = Header(None)) -> str:
    """Identity of the caller, taken from the X-Caller-Id header"""
    if not x_caller_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="X-Caller-Id header required"
        )
    return x_caller_id

"""
Admin role and audit endpoints
"""

from typing import Optional
from fastapi import APIRouter, Depends, Query

from .auth import get_caller, get_escrow_system
from .schemas import SetAdminRequest
from ..system import EscrowSystem


router = APIRouter()
audit_router = APIRouter()


@router.get("")
async def get_admin(system: EscrowSystem = Depends(get_escrow_system)):
    """Current admin identity"""
    return {"admin": system.registry.get_admin()}


@router.put("")
async def set_admin(
    request: SetAdminRequest,
    caller: str = Depends(get_caller),
    system: EscrowSystem = Depends(get_escrow_system)
):
    """Hand the admin role to another identity (admin only)"""
    system.registry.set_admin(caller, request.new_admin)
    return {
        "admin": request.new_admin,
        "message": "Admin changed"
    }


@audit_router.get("/events")
async def get_audit_events(
    entity_type: Optional[str] = None,
    entity_id: Optional[str] = None,
    limit: int = Query(100, ge=1, le=1000),
    system: EscrowSystem = Depends(get_escrow_system)
):
    """Audit events, oldest first"""
    if entity_type and entity_id:
        events = system.audit_trail.get_events_for_entity(entity_type, entity_id, limit=limit)
    else:
        events = system.audit_trail.get_all_events(limit=limit)

    return {
        "events": [
            {
                "id": event.id,
                "sequence": event.sequence,
                "event_type": event.event_type.value,
                "entity_type": event.entity_type,
                "entity_id": event.entity_id,
                "user_id": event.user_id,
                "metadata": event.metadata,
                "created_at": event.created_at.isoformat(),
                "hash": event.current_hash
            }
            for event in events
        ],
        "count": len(events)
    }


@audit_router.get("/integrity")
async def verify_audit_integrity(system: EscrowSystem = Depends(get_escrow_system)):
    """Verify the audit hash chain"""
    return system.audit_trail.verify_integrity()

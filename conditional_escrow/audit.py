"""
Audit Trail Module

Hash-chained immutable audit log with SHA-256 for tamper detection.
Every escrow state change is logged here inside the same atomic unit as the
change itself, so execution and cancellation (which leave identical stored
state) remain distinguishable after the fact.
"""

import hashlib
import json
from datetime import datetime, timezone
from dataclasses import dataclass
from typing import Dict, List, Optional, Any
from enum import Enum
import uuid

from .storage import StorageInterface, StorageRecord


class AuditEventType(Enum):
    """Types of audit events"""
    # Ledger events
    ACCOUNT_CREDITED = "account_credited"
    FUNDS_TRANSFERRED = "funds_transferred"

    # Transaction events
    TRANSACTION_CREATED = "transaction_created"
    ON_CHAIN_CONDITION_SET = "on_chain_condition_set"
    OFF_CHAIN_CONDITION_SET = "off_chain_condition_set"
    TRANSACTION_EXECUTED = "transaction_executed"
    TRANSACTION_CANCELLED = "transaction_cancelled"

    # Authority events
    ADMIN_CHANGED = "admin_changed"


@dataclass
class AuditEvent(StorageRecord):
    """
    Immutable audit event with hash chaining for tamper detection
    """
    sequence: int       # Position in the chain, starting at 0
    event_type: AuditEventType
    entity_type: str    # ledger, transaction or registry
    entity_id: str
    previous_hash: str
    current_hash: str
    metadata: Dict[str, Any]
    user_id: Optional[str] = None  # Caller that triggered the change

    def calculate_hash(self) -> str:
        """
        Calculate SHA-256 hash of this event
        Hash includes all fields except current_hash to prevent circular reference
        """
        hash_data = {
            'id': self.id,
            'sequence': self.sequence,
            'created_at': self.created_at.isoformat(),
            'event_type': self.event_type.value,
            'entity_type': self.entity_type,
            'entity_id': self.entity_id,
            'previous_hash': self.previous_hash,
            'user_id': self.user_id,
            'metadata': self.metadata
        }

        json_data = json.dumps(hash_data, sort_keys=True, separators=(',', ':'), default=str)
        return hashlib.sha256(json_data.encode('utf-8')).hexdigest()

    def verify_hash(self) -> bool:
        """Verify that the current hash is correct"""
        return self.current_hash == self.calculate_hash()

    def to_dict(self) -> Dict[str, Any]:
        result = super().to_dict()
        result['event_type'] = self.event_type.value
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'AuditEvent':
        data = dict(data)
        if isinstance(data['event_type'], str):
            data['event_type'] = AuditEventType(data['event_type'])
        return super().from_dict(data)


class AuditTrail:
    """
    Hash-chained audit trail for tamper detection
    """

    def __init__(self, storage: StorageInterface, table_name: str = "audit_events",
                 enabled: bool = True):
        self.storage = storage
        self.table_name = table_name
        self.enabled = enabled

    def _last_event(self) -> Optional[AuditEvent]:
        events = self._load_events()
        return events[-1] if events else None

    def _load_events(self) -> List[AuditEvent]:
        events = [AuditEvent.from_dict(data) for data in self.storage.load_all(self.table_name)]
        events.sort(key=lambda e: e.sequence)
        return events

    def log_event(
        self,
        event_type: AuditEventType,
        entity_type: str,
        entity_id: str,
        metadata: Optional[Dict[str, Any]] = None,
        user_id: Optional[str] = None
    ) -> Optional[AuditEvent]:
        """
        Append an event to the chain

        Args:
            event_type: Type of audit event
            entity_type: Type of entity being audited
            entity_id: ID of the entity
            metadata: Additional event-specific data
            user_id: Caller who initiated the action

        Returns:
            Created AuditEvent, or None when auditing is disabled
        """
        if not self.enabled:
            return None

        # Joins the caller's atomic unit, so a rolled back operation leaves no event
        with self.storage.atomic():
            previous = self._last_event()
            now = datetime.now(timezone.utc)

            event = AuditEvent(
                id=str(uuid.uuid4()),
                created_at=now,
                updated_at=now,
                sequence=previous.sequence + 1 if previous else 0,
                event_type=event_type,
                entity_type=entity_type,
                entity_id=str(entity_id),
                previous_hash=previous.current_hash if previous else "",
                current_hash="",
                metadata=metadata or {},
                user_id=user_id
            )
            event.current_hash = event.calculate_hash()

            self.storage.save(self.table_name, event.id, event.to_dict())
            return event

    def get_events_for_entity(
        self,
        entity_type: str,
        entity_id: str,
        limit: Optional[int] = None
    ) -> List[AuditEvent]:
        """
        Get all audit events for a specific entity, oldest first

        Args:
            entity_type: Type of entity
            entity_id: ID of entity
            limit: Maximum number of (most recent) events to return
        """
        filters = {'entity_type': entity_type, 'entity_id': str(entity_id)}
        events = [AuditEvent.from_dict(data) for data in self.storage.find(self.table_name, filters)]
        events.sort(key=lambda e: e.sequence)

        if limit:
            events = events[-limit:]
        return events

    def get_events_by_type(self, event_type: AuditEventType,
                           limit: Optional[int] = None) -> List[AuditEvent]:
        """Get audit events of one type, oldest first"""
        events = [e for e in self._load_events() if e.event_type == event_type]
        if limit:
            events = events[-limit:]
        return events

    def get_all_events(self, limit: Optional[int] = None) -> List[AuditEvent]:
        """Get all audit events, oldest first"""
        events = self._load_events()
        if limit:
            events = events[-limit:]
        return events

    def verify_integrity(self) -> Dict[str, Any]:
        """
        Verify the integrity of the entire audit chain

        Returns:
            Dictionary with integrity check results
        """
        result = {
            'valid': True,
            'total_events': 0,
            'hash_errors': [],
            'chain_breaks': []
        }

        events = self._load_events()
        result['total_events'] = len(events)

        previous_hash = ""
        for position, event in enumerate(events):
            if not event.verify_hash():
                result['valid'] = False
                result['hash_errors'].append({
                    'event_id': event.id,
                    'position': position,
                    'expected_hash': event.calculate_hash(),
                    'actual_hash': event.current_hash
                })

            if event.previous_hash != previous_hash or event.sequence != position:
                result['valid'] = False
                result['chain_breaks'].append({
                    'event_id': event.id,
                    'position': position,
                    'expected_previous_hash': previous_hash,
                    'actual_previous_hash': event.previous_hash
                })
            previous_hash = event.current_hash

        return result

    def count_events(self) -> int:
        """Get total number of audit events"""
        return self.storage.count(self.table_name)

    def get_latest_hash(self) -> Optional[str]:
        """Get the hash of the most recent audit event"""
        last = self._last_event()
        return last.current_hash if last else None

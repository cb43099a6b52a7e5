"""
Event System Module

In-process publish/subscribe for escrow domain events. Events are published
only after the state change they describe has been committed.
"""

from enum import Enum
from typing import Callable, Dict, List, Any, Optional
from dataclasses import dataclass, field
from datetime import datetime, timezone
import uuid
import logging
from threading import RLock


class DomainEvent(Enum):
    """Domain events that can occur in the escrow engine"""

    # Ledger events
    ACCOUNT_CREDITED = "ledger.account_credited"
    FUNDS_TRANSFERRED = "ledger.funds_transferred"

    # Transaction events
    TRANSACTION_CREATED = "transaction.created"
    CONDITION_UPDATED = "transaction.condition_updated"
    TRANSACTION_EXECUTED = "transaction.executed"
    TRANSACTION_CANCELLED = "transaction.cancelled"

    # Authority events
    ADMIN_CHANGED = "registry.admin_changed"


@dataclass
class EventPayload:
    """Payload for domain events"""
    event_type: DomainEvent
    entity_type: str
    entity_id: str
    data: Dict[str, Any]
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    event_id: str = field(default_factory=lambda: str(uuid.uuid4()))

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization"""
        return {
            'event_type': self.event_type.value,
            'entity_type': self.entity_type,
            'entity_id': self.entity_id,
            'data': self.data,
            'timestamp': self.timestamp.isoformat(),
            'event_id': self.event_id
        }


class EventDispatcher:
    """Central event dispatcher, publish/subscribe pattern"""

    def __init__(self):
        self._handlers: Dict[DomainEvent, List[Callable]] = {}
        self._global_handlers: List[Callable] = []
        self._lock = RLock()
        self.logger = logging.getLogger("escrow.events")

    def subscribe(self, event_type: DomainEvent, handler: Callable) -> None:
        """Subscribe to a specific event type"""
        with self._lock:
            self._handlers.setdefault(event_type, []).append(handler)
            self.logger.debug(f"Subscribed handler {getattr(handler, '__name__', repr(handler))} to {event_type.value}")

    def subscribe_all(self, handler: Callable) -> None:
        """Subscribe to ALL events"""
        with self._lock:
            self._global_handlers.append(handler)

    def unsubscribe(self, event_type: DomainEvent, handler: Callable) -> None:
        """Unsubscribe from a specific event type"""
        with self._lock:
            try:
                self._handlers.get(event_type, []).remove(handler)
            except ValueError:
                self.logger.warning(f"Handler {getattr(handler, '__name__', repr(handler))} was not subscribed to {event_type.value}")

    def publish(self, event: EventPayload) -> None:
        """Publish event to all subscribers"""
        with self._lock:
            handlers = list(self._handlers.get(event.event_type, [])) + list(self._global_handlers)

        self.logger.debug(f"Publishing event {event.event_type.value} for {event.entity_type}:{event.entity_id}")
        for handler in handlers:
            try:
                handler(event)
            except Exception as e:
                # Log but don't break the main operation
                self.logger.error(f"Error in event handler {getattr(handler, '__name__', repr(handler))} for {event.event_type.value}: {e}")

    def get_handler_count(self, event_type: Optional[DomainEvent] = None) -> int:
        """Get count of handlers for a specific event type or all"""
        with self._lock:
            if event_type:
                return len(self._handlers.get(event_type, []))
            total = sum(len(handlers) for handlers in self._handlers.values())
            return total + len(self._global_handlers)


class EventPublisherMixin:
    """
    Mixin giving a component an optional dispatcher to publish through

    The component's ``storage`` delays delivery until the outermost atomic
    block commits, so handlers only ever observe committed state.
    """

    _event_dispatcher: Optional[EventDispatcher] = None

    def set_event_dispatcher(self, event_dispatcher: Optional[EventDispatcher]) -> None:
        self._event_dispatcher = event_dispatcher

    def publish_event(self, event_type: DomainEvent, entity_type: str, entity_id: Any,
                      data: Dict[str, Any]) -> None:
        dispatcher = self._event_dispatcher
        if dispatcher is None:
            return
        event = EventPayload(
            event_type=event_type,
            entity_type=entity_type,
            entity_id=str(entity_id),
            data=data
        )
        self.storage.on_commit(lambda: dispatcher.publish(event))

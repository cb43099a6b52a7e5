"""
Transaction Registry Module

Owns pending conditional transactions, the transaction id counter and the
admin identity. A transaction is pending exactly while its record exists;
execution and cancellation both delete it, and the audit trail records
which of the two happened.

Fund reservation policy: creation checks the sender balance but reserves
nothing. Execution re-checks through Ledger.transfer, and a sender who spent
the funds in between gets InsufficientFunds with the record left pending.
"""

from datetime import datetime, timezone
from dataclasses import dataclass, asdict
from typing import Any, Dict, List, Optional

from .storage import StorageInterface
from .audit import AuditTrail, AuditEventType
from .ledger import Ledger, validate_amount
from .events import EventDispatcher, EventPublisherMixin, DomainEvent
from .errors import (
    EscrowError, InsufficientFunds, NotAuthorized,
    TransactionNotFound, ConditionsNotMet
)
from .logging_config import get_logger, log_action


@dataclass
class PendingTransaction:
    """
    Conditional transfer waiting for both conditions
    Only the two condition flags change after creation
    """
    id: int
    sender: str
    recipient: str
    amount: int
    created_at: datetime
    on_chain_condition_met: bool = False
    off_chain_condition_met: bool = False

    @property
    def conditions_met(self) -> bool:
        """Both the on-chain and off-chain conditions are confirmed"""
        return self.on_chain_condition_met and self.off_chain_condition_met

    def to_dict(self) -> Dict[str, Any]:
        result = asdict(self)
        result['created_at'] = self.created_at.isoformat()
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'PendingTransaction':
        return cls(
            id=int(data['id']),
            sender=data['sender'],
            recipient=data['recipient'],
            amount=int(data['amount']),
            created_at=datetime.fromisoformat(data['created_at']),
            on_chain_condition_met=bool(data['on_chain_condition_met']),
            off_chain_condition_met=bool(data['off_chain_condition_met'])
        )


class TransactionRegistry(EventPublisherMixin):
    """
    Gatekeeper for conditional transactions

    Every public operation runs inside storage.atomic(), so each one is
    applied as a single step against both the registry and the ledger.
    """

    STATE_ID = "registry"

    def __init__(
        self,
        storage: StorageInterface,
        ledger: Ledger,
        audit_trail: AuditTrail,
        admin_id: str,
        event_dispatcher: Optional[EventDispatcher] = None
    ):
        self.storage = storage
        self.ledger = ledger
        self.audit_trail = audit_trail
        self.table_name = "pending_transactions"
        self.state_table = "registry_state"
        self.logger = get_logger("escrow.registry")
        self.set_event_dispatcher(event_dispatcher)

        with self.storage.atomic():
            # A persisted registry keeps its admin and counter
            if not self.storage.exists(self.state_table, self.STATE_ID):
                self._save_state({'admin': admin_id, 'tx_counter': 0})

    # Registry state

    def get_admin(self) -> str:
        """Current admin identity"""
        return self._load_state()['admin']

    def next_transaction_id(self) -> int:
        """Id the next created transaction will receive"""
        return self._load_state()['tx_counter']

    def set_admin(self, caller: str, new_admin: str) -> None:
        """
        Hand the admin role to another identity

        Raises:
            NotAuthorized: If caller is not the current admin
        """
        with self.storage.atomic():
            state = self._load_state()
            previous_admin = state['admin']
            if caller != previous_admin:
                self._reject(NotAuthorized(caller, "change the admin"), caller, "set_admin", "registry")

            state['admin'] = new_admin
            self._save_state(state)
            self.audit_trail.log_event(
                event_type=AuditEventType.ADMIN_CHANGED,
                entity_type="registry",
                entity_id=self.STATE_ID,
                metadata={"previous_admin": previous_admin, "new_admin": new_admin},
                user_id=caller
            )

        log_action(
            self.logger, "info", "Admin changed",
            user_id=caller, action="set_admin", resource="registry",
            extra={"previous_admin": previous_admin, "new_admin": new_admin}
        )
        self.publish_event(DomainEvent.ADMIN_CHANGED, "registry", self.STATE_ID,
                           {"previous_admin": previous_admin, "new_admin": new_admin})

    # Transaction lifecycle

    def create_conditional_transaction(self, sender: str, recipient: str, amount: int) -> int:
        """
        Register a transfer that waits for both conditions

        Args:
            sender: Account the funds will come from; also the caller
            recipient: Account the funds will go to
            amount: Positive integer amount

        Returns:
            Id of the new pending transaction

        Raises:
            InvalidAmount: If amount is not a positive integer
            InsufficientFunds: If sender balance is below amount
        """
        validate_amount(amount)

        with self.storage.atomic():
            balance = self.ledger.balance_of(sender)
            if balance < amount:
                self._reject(InsufficientFunds(sender, balance, amount), sender,
                             "create_transaction", f"account:{sender}")

            state = self._load_state()
            tx_id = state['tx_counter']
            transaction = PendingTransaction(
                id=tx_id,
                sender=sender,
                recipient=recipient,
                amount=amount,
                created_at=datetime.now(timezone.utc)
            )
            self._save_transaction(transaction)

            state['tx_counter'] = tx_id + 1
            self._save_state(state)

            self.audit_trail.log_event(
                event_type=AuditEventType.TRANSACTION_CREATED,
                entity_type="transaction",
                entity_id=str(tx_id),
                metadata={"sender": sender, "recipient": recipient, "amount": amount},
                user_id=sender
            )

        log_action(
            self.logger, "info", f"Conditional transaction created: {tx_id}",
            user_id=sender, action="create_transaction", resource=f"transaction:{tx_id}",
            extra={"sender": sender, "recipient": recipient, "amount": amount}
        )
        self.publish_event(DomainEvent.TRANSACTION_CREATED, "transaction", tx_id,
                           {"sender": sender, "recipient": recipient, "amount": amount})
        return tx_id

    def set_on_chain_condition(self, caller: str, tx_id: int, met: bool) -> None:
        """
        Record whether the on-chain condition holds (admin only)

        Raises:
            NotAuthorized: If caller is not the admin
            TransactionNotFound: If no pending transaction has this id
        """
        self._set_condition(caller, tx_id, "on_chain_condition_met", met,
                            AuditEventType.ON_CHAIN_CONDITION_SET)

    def set_off_chain_condition(self, caller: str, tx_id: int, met: bool) -> None:
        """
        Record whether the off-chain condition holds (admin only)

        Raises:
            NotAuthorized: If caller is not the admin
            TransactionNotFound: If no pending transaction has this id
        """
        self._set_condition(caller, tx_id, "off_chain_condition_met", met,
                            AuditEventType.OFF_CHAIN_CONDITION_SET)

    def execute_transaction(self, caller: str, tx_id: int) -> None:
        """
        Move the funds once both conditions are met

        Any caller may trigger execution. The ledger transfer and the
        removal of the record succeed or fail together.

        Raises:
            TransactionNotFound: If no pending transaction has this id
            ConditionsNotMet: If either condition is not confirmed
            InsufficientFunds: If the sender no longer holds the amount
        """
        with self.storage.atomic():
            transaction = self._require_transaction(tx_id, caller, "execute_transaction")

            if not transaction.conditions_met:
                self._reject(
                    ConditionsNotMet(tx_id, transaction.on_chain_condition_met,
                                     transaction.off_chain_condition_met),
                    caller, "execute_transaction", f"transaction:{tx_id}"
                )

            # The ledger logs its own rejection; the record stays pending
            self.ledger.transfer(transaction.sender, transaction.recipient,
                                 transaction.amount, caller=caller)

            self.storage.delete(self.table_name, str(tx_id))
            self.audit_trail.log_event(
                event_type=AuditEventType.TRANSACTION_EXECUTED,
                entity_type="transaction",
                entity_id=str(tx_id),
                metadata={
                    "sender": transaction.sender,
                    "recipient": transaction.recipient,
                    "amount": transaction.amount
                },
                user_id=caller
            )

        log_action(
            self.logger, "info", f"Conditional transaction executed: {tx_id}",
            user_id=caller, action="execute_transaction", resource=f"transaction:{tx_id}",
            extra={"sender": transaction.sender, "recipient": transaction.recipient,
                   "amount": transaction.amount}
        )
        self.publish_event(DomainEvent.TRANSACTION_EXECUTED, "transaction", tx_id, {
            "sender": transaction.sender,
            "recipient": transaction.recipient,
            "amount": transaction.amount,
            "executed_by": caller
        })

    def cancel_transaction(self, caller: str, tx_id: int) -> None:
        """
        Drop a pending transaction without moving funds (sender only)

        Raises:
            TransactionNotFound: If no pending transaction has this id
            NotAuthorized: If caller is not the transaction's sender
        """
        with self.storage.atomic():
            transaction = self._require_transaction(tx_id, caller, "cancel_transaction")

            if caller != transaction.sender:
                self._reject(NotAuthorized(caller, f"cancel transaction {tx_id}"),
                             caller, "cancel_transaction", f"transaction:{tx_id}")

            self.storage.delete(self.table_name, str(tx_id))
            self.audit_trail.log_event(
                event_type=AuditEventType.TRANSACTION_CANCELLED,
                entity_type="transaction",
                entity_id=str(tx_id),
                metadata={
                    "sender": transaction.sender,
                    "recipient": transaction.recipient,
                    "amount": transaction.amount
                },
                user_id=caller
            )

        log_action(
            self.logger, "info", f"Conditional transaction cancelled: {tx_id}",
            user_id=caller, action="cancel_transaction", resource=f"transaction:{tx_id}"
        )
        self.publish_event(DomainEvent.TRANSACTION_CANCELLED, "transaction", tx_id, {
            "sender": transaction.sender,
            "recipient": transaction.recipient,
            "amount": transaction.amount
        })

    # Reads

    def get_transaction(self, tx_id: int) -> Optional[PendingTransaction]:
        """Pending transaction by id, or None if unknown or already resolved"""
        data = self.storage.load(self.table_name, str(tx_id))
        if data is None:
            return None
        return PendingTransaction.from_dict(data)

    def list_pending_transactions(
        self,
        sender: Optional[str] = None,
        recipient: Optional[str] = None
    ) -> List[PendingTransaction]:
        """Pending transactions ordered by id, optionally filtered by party"""
        filters: Dict[str, Any] = {}
        if sender is not None:
            filters['sender'] = sender
        if recipient is not None:
            filters['recipient'] = recipient

        transactions = [
            PendingTransaction.from_dict(data)
            for data in self.storage.find(self.table_name, filters)
        ]
        transactions.sort(key=lambda t: t.id)
        return transactions

    # Internals

    def _set_condition(self, caller: str, tx_id: int, flag: str, met: bool,
                       audit_type: AuditEventType) -> None:
        action = f"set_{flag[:-len('_met')]}"

        with self.storage.atomic():
            if caller != self._load_state()['admin']:
                self._reject(NotAuthorized(caller, f"set conditions on transaction {tx_id}"),
                             caller, action, f"transaction:{tx_id}")

            transaction = self._require_transaction(tx_id, caller, action)
            setattr(transaction, flag, bool(met))
            self._save_transaction(transaction)

            self.audit_trail.log_event(
                event_type=audit_type,
                entity_type="transaction",
                entity_id=str(tx_id),
                metadata={flag: bool(met)},
                user_id=caller
            )

        log_action(
            self.logger, "info", f"Condition updated on transaction {tx_id}",
            user_id=caller, action=action, resource=f"transaction:{tx_id}",
            extra={flag: bool(met)}
        )
        self.publish_event(DomainEvent.CONDITION_UPDATED, "transaction", tx_id, {
            flag: bool(met),
            "conditions_met": transaction.conditions_met
        })

    def _require_transaction(self, tx_id: int, caller: str, action: str) -> PendingTransaction:
        transaction = self.get_transaction(tx_id)
        if transaction is None:
            self._reject(TransactionNotFound(tx_id), caller, action, f"transaction:{tx_id}")
        return transaction

    def _reject(self, error: EscrowError, caller: str, action: str, resource: str) -> None:
        log_action(
            self.logger, "warning", f"{action} rejected: {error.code}",
            user_id=caller, action=action, resource=resource,
            extra={"error": error.code, "detail": error.message}
        )
        raise error

    def _save_transaction(self, transaction: PendingTransaction) -> None:
        self.storage.save(self.table_name, str(transaction.id), transaction.to_dict())

    def _load_state(self) -> Dict[str, Any]:
        return self.storage.load(self.state_table, self.STATE_ID)

    def _save_state(self, state: Dict[str, Any]) -> None:
        self.storage.save(self.state_table, self.STATE_ID, state)

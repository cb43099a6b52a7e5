"""
Ledger Module

Authoritative account balances and atomic two-party transfers. Balances are
non-negative integers in the smallest denomination; no other component
writes to the balances table.
"""

from typing import Any, Dict, Optional

from .storage import StorageInterface
from .audit import AuditTrail, AuditEventType
from .events import EventDispatcher, EventPublisherMixin, DomainEvent
from .errors import InsufficientFunds, InvalidAmount
from .logging_config import get_logger, log_action


def validate_amount(amount: Any) -> int:
    """Return amount if it is a positive integer, else raise InvalidAmount"""
    if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
        raise InvalidAmount(amount)
    return amount


class Ledger(EventPublisherMixin):
    """
    Holds balances and moves funds between accounts
    """

    def __init__(
        self,
        storage: StorageInterface,
        audit_trail: AuditTrail,
        event_dispatcher: Optional[EventDispatcher] = None
    ):
        self.storage = storage
        self.audit_trail = audit_trail
        self.table_name = "balances"
        self.logger = get_logger("escrow.ledger")
        self.set_event_dispatcher(event_dispatcher)

    def balance_of(self, account_id: str) -> int:
        """Balance of an account; 0 for accounts never credited"""
        data = self.storage.load(self.table_name, account_id)
        if data is None:
            return 0
        return int(data['balance'])

    def credit(self, account_id: str, amount: int, caller: Optional[str] = None) -> int:
        """
        Add funds to an account (initial balances, external deposits)

        Returns:
            New balance of the account
        """
        validate_amount(amount)

        with self.storage.atomic():
            new_balance = self.balance_of(account_id) + amount
            self._set_balance(account_id, new_balance)
            self.audit_trail.log_event(
                event_type=AuditEventType.ACCOUNT_CREDITED,
                entity_type="ledger",
                entity_id=account_id,
                metadata={"amount": amount, "balance": new_balance},
                user_id=caller
            )

        log_action(
            self.logger, "info", f"Account credited: {account_id}",
            user_id=caller, action="credit", resource=f"account:{account_id}",
            extra={"amount": amount, "balance": new_balance}
        )
        self.publish_event(DomainEvent.ACCOUNT_CREDITED, "account", account_id,
                           {"amount": amount, "balance": new_balance})
        return new_balance

    def transfer(self, from_account: str, to_account: str, amount: int,
                 caller: Optional[str] = None) -> None:
        """
        Move amount from one account to another as a single unit

        Raises:
            InvalidAmount: If amount is not a positive integer
            InsufficientFunds: If from_account holds less than amount
        """
        validate_amount(amount)

        with self.storage.atomic():
            from_balance = self.balance_of(from_account)
            if from_balance < amount:
                log_action(
                    self.logger, "warning", f"Transfer rejected: {InsufficientFunds.code}",
                    user_id=caller, action="transfer", resource=f"account:{from_account}",
                    extra={"to_account": to_account, "amount": amount, "balance": from_balance}
                )
                raise InsufficientFunds(from_account, from_balance, amount)

            self._set_balance(from_account, from_balance - amount)
            # Read after the debit so a self-transfer nets to zero
            self._set_balance(to_account, self.balance_of(to_account) + amount)

            self.audit_trail.log_event(
                event_type=AuditEventType.FUNDS_TRANSFERRED,
                entity_type="ledger",
                entity_id=from_account,
                metadata={"from_account": from_account, "to_account": to_account, "amount": amount},
                user_id=caller
            )

        log_action(
            self.logger, "info", f"Funds transferred: {from_account} -> {to_account}",
            user_id=caller, action="transfer", resource=f"account:{from_account}",
            extra={"to_account": to_account, "amount": amount}
        )
        self.publish_event(DomainEvent.FUNDS_TRANSFERRED, "account", from_account,
                           {"from_account": from_account, "to_account": to_account, "amount": amount})

    def get_balances(self) -> Dict[str, int]:
        """Snapshot of every known account balance"""
        with self.storage.atomic():
            return {
                data['account_id']: int(data['balance'])
                for data in self.storage.load_all(self.table_name)
            }

    def total_supply(self) -> int:
        """Sum of all balances"""
        return sum(self.get_balances().values())

    def _set_balance(self, account_id: str, balance: int) -> None:
        if balance < 0:
            raise ValueError(f"Balance of {account_id} cannot become negative")
        self.storage.save(self.table_name, account_id, {
            'account_id': account_id,
            'balance': balance
        })

"""
Escrow system wiring

One EscrowSystem owns all state: storage, audit trail, event dispatcher,
ledger and registry. Tests and the API each build their own instance.
"""

from typing import Dict, Optional

from .storage import StorageInterface, InMemoryStorage, create_storage
from .audit import AuditTrail
from .events import EventDispatcher
from .ledger import Ledger
from .registry import TransactionRegistry
from .config import EscrowConfig, get_config


class EscrowSystem:
    """Conditional escrow engine with all components initialized"""

    def __init__(
        self,
        admin_id: str,
        initial_balances: Optional[Dict[str, int]] = None,
        storage: Optional[StorageInterface] = None,
        enable_audit_logging: bool = True
    ):
        self.storage = storage if storage is not None else InMemoryStorage()
        self.event_dispatcher = EventDispatcher()
        self.audit_trail = AuditTrail(self.storage, enabled=enable_audit_logging)
        self.ledger = Ledger(self.storage, self.audit_trail, self.event_dispatcher)
        self.registry = TransactionRegistry(
            self.storage, self.ledger, self.audit_trail,
            admin_id=admin_id, event_dispatcher=self.event_dispatcher
        )

        # Seed balances only into a fresh ledger
        if initial_balances and not self.ledger.get_balances():
            for account_id, amount in initial_balances.items():
                if amount:
                    self.ledger.credit(account_id, amount, caller=admin_id)

    @classmethod
    def from_config(cls, config: Optional[EscrowConfig] = None) -> 'EscrowSystem':
        """Build a system from EscrowConfig (environment by default)"""
        config = config or get_config()
        return cls(
            admin_id=config.admin_id,
            initial_balances=config.initial_balances,
            storage=create_storage(config.storage_backend, config.database_path),
            enable_audit_logging=config.enable_audit_logging
        )

    def close(self) -> None:
        self.storage.close()

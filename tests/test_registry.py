"""
Test suite for the transaction registry

Tests the conditional transaction state machine, authorization rules,
id allocation and atomic execution against the ledger.
"""

import logging
import threading

import pytest

from conditional_escrow.storage import InMemoryStorage, SQLiteStorage
from conditional_escrow.audit import AuditEventType
from conditional_escrow.system import EscrowSystem
from conditional_escrow.registry import PendingTransaction
from conditional_escrow.errors import (
    EscrowError, InsufficientFunds, NotAuthorized,
    TransactionNotFound, ConditionsNotMet, InvalidAmount
)


ADMIN = "ST1PQHQKV0RJXZFY1DGX8MNSNYVE3VGZJSRTPGZGM"
SENDER = "ST1SJ3DTE5DN7X54YDH5D64R3BCB6A2AG2ZQ8YPD5"
RECIPIENT = "ST2CY5V39NHDPWSXMW9QDT3HC3GD6Q6XX4CFRK9AG"
STRANGER = "ST3AM1A56AK2C1XAFJ4115ZSV26EB49BVQ10MGCS0"


class RegistryTestBase:
    """Shared fixture: admin, a funded sender and a funded recipient"""

    def setup_method(self):
        self.system = EscrowSystem(
            admin_id=ADMIN,
            initial_balances={SENDER: 10000, RECIPIENT: 5000}
        )
        self.ledger = self.system.ledger
        self.registry = self.system.registry
        self.audit_trail = self.system.audit_trail

    def confirm_both(self, tx_id):
        self.registry.set_on_chain_condition(ADMIN, tx_id, True)
        self.registry.set_off_chain_condition(ADMIN, tx_id, True)


class TestCreateConditionalTransaction(RegistryTestBase):
    """Test transaction creation"""

    def test_create_transaction(self):
        """Test creating a conditional transaction"""
        tx_id = self.registry.create_conditional_transaction(SENDER, RECIPIENT, 1000)

        assert tx_id == 0
        transaction = self.registry.get_transaction(tx_id)
        assert isinstance(transaction, PendingTransaction)
        assert transaction.sender == SENDER
        assert transaction.recipient == RECIPIENT
        assert transaction.amount == 1000
        assert transaction.on_chain_condition_met is False
        assert transaction.off_chain_condition_met is False
        assert not transaction.conditions_met

    def test_create_does_not_move_funds(self):
        """Test that creation leaves every balance untouched"""
        self.registry.create_conditional_transaction(SENDER, RECIPIENT, 10000)

        assert self.ledger.balance_of(SENDER) == 10000
        assert self.ledger.balance_of(RECIPIENT) == 5000

    def test_create_with_insufficient_funds(self):
        """Test that overdrawn creation fails and the counter does not advance"""
        with pytest.raises(InsufficientFunds) as exc_info:
            self.registry.create_conditional_transaction(SENDER, RECIPIENT, 20000)

        assert exc_info.value.code == "ERR-INSUFFICIENT-FUNDS"
        assert self.registry.next_transaction_id() == 0
        assert self.registry.list_pending_transactions() == []

        assert self.registry.create_conditional_transaction(SENDER, RECIPIENT, 100) == 0

    def test_create_with_full_balance(self):
        """Test that the whole balance may be committed"""
        assert self.registry.create_conditional_transaction(SENDER, RECIPIENT, 10000) == 0

    @pytest.mark.parametrize("amount", [0, -100])
    def test_create_rejects_non_positive_amount(self, amount):
        """Test that zero and negative amounts are refused"""
        with pytest.raises(InvalidAmount):
            self.registry.create_conditional_transaction(SENDER, RECIPIENT, amount)

        assert self.registry.next_transaction_id() == 0

    def test_ids_are_sequential_and_never_reused(self):
        """Test id allocation across cancellation and execution"""
        first = self.registry.create_conditional_transaction(SENDER, RECIPIENT, 100)
        second = self.registry.create_conditional_transaction(SENDER, RECIPIENT, 100)

        self.registry.cancel_transaction(SENDER, first)
        self.confirm_both(second)
        self.registry.execute_transaction(STRANGER, second)

        third = self.registry.create_conditional_transaction(SENDER, RECIPIENT, 100)

        assert (first, second, third) == (0, 1, 2)
        assert self.registry.next_transaction_id() == 3

    def test_multiple_pending_can_exceed_balance(self):
        """Test that creation reserves nothing, so commitments may overlap"""
        self.registry.create_conditional_transaction(SENDER, RECIPIENT, 8000)
        self.registry.create_conditional_transaction(SENDER, RECIPIENT, 8000)

        assert len(self.registry.list_pending_transactions(sender=SENDER)) == 2


class TestConditions(RegistryTestBase):
    """Test condition setting and its authorization"""

    def setup_method(self):
        super().setup_method()
        self.tx_id = self.registry.create_conditional_transaction(SENDER, RECIPIENT, 1000)

    def test_set_on_chain_condition(self):
        """Test admin setting the on-chain condition"""
        self.registry.set_on_chain_condition(ADMIN, self.tx_id, True)

        transaction = self.registry.get_transaction(self.tx_id)
        assert transaction.on_chain_condition_met is True
        assert transaction.off_chain_condition_met is False

    def test_set_off_chain_condition(self):
        """Test admin setting the off-chain condition"""
        self.registry.set_off_chain_condition(ADMIN, self.tx_id, True)

        transaction = self.registry.get_transaction(self.tx_id)
        assert transaction.off_chain_condition_met is True
        assert transaction.on_chain_condition_met is False

    def test_conditions_can_be_revoked(self):
        """Test that a condition can be set back to false"""
        self.confirm_both(self.tx_id)
        self.registry.set_on_chain_condition(ADMIN, self.tx_id, False)

        transaction = self.registry.get_transaction(self.tx_id)
        assert transaction.on_chain_condition_met is False
        assert transaction.off_chain_condition_met is True

    def test_setting_same_value_is_idempotent(self):
        """Test repeated identical updates succeed"""
        self.registry.set_on_chain_condition(ADMIN, self.tx_id, True)
        self.registry.set_on_chain_condition(ADMIN, self.tx_id, True)

        assert self.registry.get_transaction(self.tx_id).on_chain_condition_met is True

    @pytest.mark.parametrize("caller", [SENDER, RECIPIENT, STRANGER])
    def test_non_admin_cannot_set_conditions(self, caller):
        """Test that only the admin may set either condition"""
        with pytest.raises(NotAuthorized):
            self.registry.set_on_chain_condition(caller, self.tx_id, True)
        with pytest.raises(NotAuthorized):
            self.registry.set_off_chain_condition(caller, self.tx_id, True)

        transaction = self.registry.get_transaction(self.tx_id)
        assert transaction.on_chain_condition_met is False
        assert transaction.off_chain_condition_met is False

    def test_set_condition_on_unknown_transaction(self):
        """Test condition setting on a missing id"""
        with pytest.raises(TransactionNotFound):
            self.registry.set_on_chain_condition(ADMIN, 42, True)
        with pytest.raises(TransactionNotFound):
            self.registry.set_off_chain_condition(ADMIN, 42, True)

    def test_authorization_checked_before_existence(self):
        """Test that a non-admin gets NotAuthorized even for a missing id"""
        with pytest.raises(NotAuthorized):
            self.registry.set_on_chain_condition(STRANGER, 42, True)


class TestExecuteTransaction(RegistryTestBase):
    """Test gated execution"""

    def setup_method(self):
        super().setup_method()
        self.tx_id = self.registry.create_conditional_transaction(SENDER, RECIPIENT, 1000)

    def test_execute_when_conditions_met(self):
        """Test execution moves funds and removes the record"""
        self.confirm_both(self.tx_id)

        self.registry.execute_transaction(SENDER, self.tx_id)

        assert self.registry.get_transaction(self.tx_id) is None
        assert self.ledger.balance_of(SENDER) == 9000
        assert self.ledger.balance_of(RECIPIENT) == 6000

    @pytest.mark.parametrize("on_chain,off_chain", [
        (False, False), (True, False), (False, True)
    ])
    def test_execute_requires_both_conditions(self, on_chain, off_chain):
        """Test that any unmet condition blocks execution"""
        self.registry.set_on_chain_condition(ADMIN, self.tx_id, on_chain)
        self.registry.set_off_chain_condition(ADMIN, self.tx_id, off_chain)

        with pytest.raises(ConditionsNotMet) as exc_info:
            self.registry.execute_transaction(SENDER, self.tx_id)

        assert exc_info.value.code == "ERR-CONDITIONS-NOT-MET"
        assert self.registry.get_transaction(self.tx_id) is not None
        assert self.ledger.balance_of(SENDER) == 10000
        assert self.ledger.balance_of(RECIPIENT) == 5000

    @pytest.mark.parametrize("caller", [SENDER, RECIPIENT, ADMIN, STRANGER])
    def test_anyone_may_execute(self, caller):
        """Test that execution is open to every caller once gated"""
        self.confirm_both(self.tx_id)

        self.registry.execute_transaction(caller, self.tx_id)

        assert self.registry.get_transaction(self.tx_id) is None

    def test_execute_unknown_transaction(self):
        """Test execution of a missing id"""
        with pytest.raises(TransactionNotFound):
            self.registry.execute_transaction(SENDER, 99)

    def test_execute_twice(self):
        """Test that an executed transaction cannot run again"""
        self.confirm_both(self.tx_id)
        self.registry.execute_transaction(SENDER, self.tx_id)

        with pytest.raises(TransactionNotFound):
            self.registry.execute_transaction(SENDER, self.tx_id)

        assert self.ledger.balance_of(SENDER) == 9000

    def test_execute_after_funds_spent_elsewhere(self):
        """Test that execution re-checks the balance and stays pending on failure"""
        self.confirm_both(self.tx_id)
        self.ledger.transfer(SENDER, STRANGER, 9500)

        with pytest.raises(InsufficientFunds):
            self.registry.execute_transaction(RECIPIENT, self.tx_id)

        transaction = self.registry.get_transaction(self.tx_id)
        assert transaction is not None
        assert transaction.conditions_met
        assert self.ledger.balance_of(SENDER) == 500
        assert self.ledger.balance_of(RECIPIENT) == 5000

        # Topping up lets the same transaction complete
        self.ledger.credit(SENDER, 500)
        self.registry.execute_transaction(RECIPIENT, self.tx_id)
        assert self.ledger.balance_of(RECIPIENT) == 6000
        assert self.registry.get_transaction(self.tx_id) is None

    def test_unfunded_execution_logs_one_warning(self, caplog):
        """Test that a failed transfer during execution is logged once"""
        self.confirm_both(self.tx_id)
        self.ledger.transfer(SENDER, STRANGER, 9500)

        with caplog.at_level(logging.WARNING, logger="escrow"):
            with pytest.raises(InsufficientFunds):
                self.registry.execute_transaction(RECIPIENT, self.tx_id)

        warnings = [r for r in caplog.records if r.levelno == logging.WARNING]
        assert len(warnings) == 1
        assert warnings[0].name == "escrow.ledger"
        assert warnings[0].user_id == RECIPIENT

    def test_overlapping_commitments_only_one_executes(self):
        """Test two pending transactions that together exceed the balance"""
        second = self.registry.create_conditional_transaction(SENDER, STRANGER, 9500)
        self.confirm_both(self.tx_id)
        self.confirm_both(second)

        self.registry.execute_transaction(ADMIN, second)
        with pytest.raises(InsufficientFunds):
            self.registry.execute_transaction(ADMIN, self.tx_id)

        assert self.ledger.balance_of(SENDER) == 500
        assert self.ledger.balance_of(STRANGER) == 9500

    def test_execution_conserves_total_supply(self):
        """Test that execution neither creates nor destroys funds"""
        before = self.ledger.total_supply()
        self.confirm_both(self.tx_id)
        self.registry.execute_transaction(SENDER, self.tx_id)

        assert self.ledger.total_supply() == before

    def test_concurrent_execution_succeeds_once(self):
        """Test that racing executors see exactly one success"""
        self.confirm_both(self.tx_id)
        outcomes = []
        barrier = threading.Barrier(8)

        def attempt():
            barrier.wait()
            try:
                self.registry.execute_transaction(STRANGER, self.tx_id)
                outcomes.append("ok")
            except TransactionNotFound:
                outcomes.append("not_found")

        threads = [threading.Thread(target=attempt) for _ in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert outcomes.count("ok") == 1
        assert outcomes.count("not_found") == 7
        assert self.ledger.balance_of(SENDER) == 9000
        assert self.ledger.balance_of(RECIPIENT) == 6000


class TestCancelTransaction(RegistryTestBase):
    """Test cancellation rights"""

    def setup_method(self):
        super().setup_method()
        self.tx_id = self.registry.create_conditional_transaction(SENDER, RECIPIENT, 1000)

    def test_sender_can_cancel(self):
        """Test that the sender removes the record without moving funds"""
        self.registry.cancel_transaction(SENDER, self.tx_id)

        assert self.registry.get_transaction(self.tx_id) is None
        assert self.ledger.balance_of(SENDER) == 10000
        assert self.ledger.balance_of(RECIPIENT) == 5000

    def test_sender_can_cancel_after_conditions_met(self):
        """Test that confirmed conditions do not block cancellation"""
        self.confirm_both(self.tx_id)

        self.registry.cancel_transaction(SENDER, self.tx_id)

        assert self.registry.get_transaction(self.tx_id) is None
        assert self.ledger.balance_of(SENDER) == 10000

    @pytest.mark.parametrize("caller", [RECIPIENT, ADMIN, STRANGER])
    def test_non_sender_cannot_cancel(self, caller):
        """Test that recipient, admin and third parties cannot cancel"""
        with pytest.raises(NotAuthorized) as exc_info:
            self.registry.cancel_transaction(caller, self.tx_id)

        assert exc_info.value.code == "ERR-NOT-AUTHORIZED"
        assert self.registry.get_transaction(self.tx_id) is not None

    def test_cancel_unknown_transaction(self):
        """Test that existence is checked before authorization"""
        with pytest.raises(TransactionNotFound):
            self.registry.cancel_transaction(STRANGER, 7)

    def test_cancelled_transaction_cannot_execute(self):
        """Test that cancellation is final"""
        self.confirm_both(self.tx_id)
        self.registry.cancel_transaction(SENDER, self.tx_id)

        with pytest.raises(TransactionNotFound):
            self.registry.execute_transaction(SENDER, self.tx_id)


class TestAdmin(RegistryTestBase):
    """Test transfer of the admin role"""

    def test_initial_admin_is_deployer(self):
        assert self.registry.get_admin() == ADMIN

    def test_admin_can_hand_over_role(self):
        """Test that the new admin gains and the old admin loses condition rights"""
        tx_id = self.registry.create_conditional_transaction(SENDER, RECIPIENT, 1000)
        self.registry.set_on_chain_condition(ADMIN, tx_id, True)

        self.registry.set_admin(ADMIN, STRANGER)

        assert self.registry.get_admin() == STRANGER
        with pytest.raises(NotAuthorized):
            self.registry.set_off_chain_condition(ADMIN, tx_id, True)
        self.registry.set_off_chain_condition(STRANGER, tx_id, True)

        # Flags set under the previous admin are kept
        assert self.registry.get_transaction(tx_id).conditions_met

    def test_non_admin_cannot_change_admin(self):
        with pytest.raises(NotAuthorized):
            self.registry.set_admin(STRANGER, STRANGER)

        assert self.registry.get_admin() == ADMIN


class TestScenarios(RegistryTestBase):
    """End-to-end escrow flows"""

    def test_gated_execution_scenario(self):
        """Test execution is blocked until the off-chain condition is confirmed"""
        tx_id = self.registry.create_conditional_transaction(SENDER, RECIPIENT, 1000)
        assert tx_id == 0

        self.registry.set_on_chain_condition(ADMIN, tx_id, True)
        self.registry.set_off_chain_condition(ADMIN, tx_id, False)
        with pytest.raises(ConditionsNotMet):
            self.registry.execute_transaction(STRANGER, tx_id)

        self.registry.set_off_chain_condition(ADMIN, tx_id, True)
        self.registry.execute_transaction(STRANGER, tx_id)

        assert self.ledger.balance_of(SENDER) == 9000
        assert self.ledger.balance_of(RECIPIENT) == 6000
        assert self.registry.get_transaction(0) is None

    def test_cancellation_scenario(self):
        """Test the recipient is refused and the sender may cancel"""
        tx_id = self.registry.create_conditional_transaction(SENDER, RECIPIENT, 1000)

        with pytest.raises(NotAuthorized):
            self.registry.cancel_transaction(RECIPIENT, tx_id)
        self.registry.cancel_transaction(SENDER, tx_id)

        assert self.registry.get_transaction(0) is None

    def test_audit_distinguishes_execution_from_cancellation(self):
        """Test that the two terminal outcomes leave different audit events"""
        executed = self.registry.create_conditional_transaction(SENDER, RECIPIENT, 100)
        cancelled = self.registry.create_conditional_transaction(SENDER, RECIPIENT, 100)
        self.confirm_both(executed)
        self.registry.execute_transaction(RECIPIENT, executed)
        self.registry.cancel_transaction(SENDER, cancelled)

        executed_events = self.audit_trail.get_events_for_entity("transaction", str(executed))
        cancelled_events = self.audit_trail.get_events_for_entity("transaction", str(cancelled))

        assert executed_events[-1].event_type == AuditEventType.TRANSACTION_EXECUTED
        assert executed_events[-1].user_id == RECIPIENT
        assert cancelled_events[-1].event_type == AuditEventType.TRANSACTION_CANCELLED
        assert self.audit_trail.verify_integrity()['valid']

    def test_failures_leave_no_audit_events(self):
        """Test that rejected operations are not recorded"""
        tx_id = self.registry.create_conditional_transaction(SENDER, RECIPIENT, 100)
        count = self.audit_trail.count_events()

        for operation in (
            lambda: self.registry.create_conditional_transaction(SENDER, RECIPIENT, 10 ** 9),
            lambda: self.registry.set_on_chain_condition(STRANGER, tx_id, True),
            lambda: self.registry.execute_transaction(SENDER, tx_id),
            lambda: self.registry.cancel_transaction(RECIPIENT, tx_id),
            lambda: self.registry.set_admin(SENDER, SENDER),
        ):
            with pytest.raises(EscrowError):
                operation()

        assert self.audit_trail.count_events() == count

    def test_list_pending_transactions(self):
        """Test filtering pending transactions by party"""
        self.registry.create_conditional_transaction(SENDER, RECIPIENT, 100)
        self.registry.create_conditional_transaction(RECIPIENT, SENDER, 200)
        self.registry.create_conditional_transaction(SENDER, STRANGER, 300)

        assert [t.id for t in self.registry.list_pending_transactions()] == [0, 1, 2]
        assert [t.id for t in self.registry.list_pending_transactions(sender=SENDER)] == [0, 2]
        assert [t.id for t in self.registry.list_pending_transactions(recipient=SENDER)] == [1]
        assert [t.id for t in self.registry.list_pending_transactions(
            sender=SENDER, recipient=STRANGER)] == [2]


class TestIsolatedInstances:
    """Test that separate systems share no state"""

    def test_two_systems_are_independent(self):
        first = EscrowSystem(admin_id=ADMIN, initial_balances={SENDER: 100})
        second = EscrowSystem(admin_id=STRANGER, initial_balances={SENDER: 50})

        first.registry.create_conditional_transaction(SENDER, RECIPIENT, 100)

        assert second.registry.next_transaction_id() == 0
        assert second.registry.get_admin() == STRANGER
        assert second.ledger.balance_of(SENDER) == 50


class TestSQLiteBackedRegistry:
    """Test the registry over persistent storage"""

    def test_state_survives_reopen(self, tmp_path):
        """Test admin, counter, records and balances persist across instances"""
        db_path = tmp_path / "escrow.db"

        system = EscrowSystem(
            admin_id=ADMIN,
            initial_balances={SENDER: 10000},
            storage=SQLiteStorage(db_path)
        )
        tx_id = system.registry.create_conditional_transaction(SENDER, RECIPIENT, 1000)
        system.registry.set_on_chain_condition(ADMIN, tx_id, True)
        system.registry.set_admin(ADMIN, STRANGER)
        system.close()

        reopened = EscrowSystem(
            admin_id="ignored",
            initial_balances={SENDER: 10000},
            storage=SQLiteStorage(db_path)
        )
        try:
            assert reopened.registry.get_admin() == STRANGER
            assert reopened.registry.next_transaction_id() == 1
            assert reopened.ledger.balance_of(SENDER) == 10000
            assert reopened.registry.get_transaction(tx_id).on_chain_condition_met is True

            reopened.registry.set_off_chain_condition(STRANGER, tx_id, True)
            reopened.registry.execute_transaction(RECIPIENT, tx_id)
            assert reopened.ledger.balance_of(RECIPIENT) == 1000
            assert reopened.audit_trail.verify_integrity()['valid']
        finally:
            reopened.close()

    def test_failed_execution_rolls_back_on_sqlite(self):
        """Test that a failed execution leaves SQLite state unchanged"""
        system = EscrowSystem(
            admin_id=ADMIN,
            initial_balances={SENDER: 1000},
            storage=SQLiteStorage(":memory:")
        )
        tx_id = system.registry.create_conditional_transaction(SENDER, RECIPIENT, 1000)
        system.registry.set_on_chain_condition(ADMIN, tx_id, True)
        system.registry.set_off_chain_condition(ADMIN, tx_id, True)
        system.ledger.transfer(SENDER, STRANGER, 1)

        with pytest.raises(InsufficientFunds):
            system.registry.execute_transaction(SENDER, tx_id)

        assert system.registry.get_transaction(tx_id) is not None
        assert system.ledger.get_balances() == {SENDER: 999, STRANGER: 1}
        system.close()


def test_in_memory_storage_is_default():
    system = EscrowSystem(admin_id=ADMIN)
    assert isinstance(system.storage, InMemoryStorage)

"""
Escrow error kinds

Every failure the engine can report. Callers tell kinds apart by exception
type or by the stable ``code`` attribute, never by message text.
"""

from typing import Any, Dict, Optional


class EscrowError(Exception):
    """Base class for all escrow engine errors"""

    code = "ERR-ESCROW"
    http_status = 400

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.message = message
        self.context = context

    def to_dict(self) -> Dict[str, Any]:
        """Convert to a JSON-serializable error body"""
        result: Dict[str, Any] = {"error": self.code, "detail": self.message}
        if self.context:
            result["context"] = self.context
        return result


class InsufficientFunds(EscrowError):
    """Sender balance is lower than the requested amount"""

    code = "ERR-INSUFFICIENT-FUNDS"
    http_status = 409

    def __init__(self, account_id: str, balance: int, amount: int):
        super().__init__(
            f"Account {account_id} has balance {balance}, needs {amount}",
            account_id=account_id, balance=balance, amount=amount
        )


class NotAuthorized(EscrowError):
    """Caller lacks the right to perform the operation"""

    code = "ERR-NOT-AUTHORIZED"
    http_status = 403

    def __init__(self, caller: str, action: str):
        super().__init__(
            f"{caller} is not authorized to {action}",
            caller=caller, action=action
        )


class TransactionNotFound(EscrowError):
    """No pending transaction exists for the id"""

    code = "ERR-TRANSACTION-NOT-FOUND"
    http_status = 404

    def __init__(self, tx_id: int):
        super().__init__(f"Transaction {tx_id} not found", tx_id=tx_id)


class ConditionsNotMet(EscrowError):
    """Execution attempted before both conditions were confirmed"""

    code = "ERR-CONDITIONS-NOT-MET"
    http_status = 409

    def __init__(self, tx_id: int, on_chain: bool, off_chain: bool):
        super().__init__(
            f"Transaction {tx_id} conditions not met "
            f"(on_chain={on_chain}, off_chain={off_chain})",
            tx_id=tx_id, on_chain_condition_met=on_chain,
            off_chain_condition_met=off_chain
        )


class InvalidAmount(EscrowError):
    """Amount is not a positive integer"""

    code = "ERR-INVALID-AMOUNT"
    http_status = 400

    def __init__(self, amount: Optional[Any]):
        super().__init__(f"Amount must be a positive integer, got {amount!r}", amount=amount)

"""
Conditional Escrow Engine

Holds sender funds destined for a recipient until both the on-chain and the
off-chain condition have been confirmed by the admin, with a hash-chained
audit trail of every transition.
"""

__version__ = "1.0.0"

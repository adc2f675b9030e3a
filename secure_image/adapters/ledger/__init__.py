"""
Ledger Adapters
"""

from .memory import InMemoryLedger
from .rpc import JsonRpcLedger

__all__ = [
    "InMemoryLedger",
    "JsonRpcLedger",
]

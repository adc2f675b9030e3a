"""
Domain Ports
依存性逆転のためのインターフェース定義
"""

from .blob_store_port import IBlobStore
from .confidential_compute_port import EscrowedKey, HandleContractPair, IConfidentialCompute
from .ledger_port import ILedger, ImageUploaded, LedgerReceipt

__all__ = [
    "IBlobStore",
    "IConfidentialCompute",
    "ILedger",
    "EscrowedKey",
    "HandleContractPair",
    "ImageUploaded",
    "LedgerReceipt",
]

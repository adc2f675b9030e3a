"""
Domain Services
鍵エスクロー・アクセスレジストリ・復号・アップロード
"""

from .access_registry import AccessRegistry
from .decryption import DecryptionOrchestrator, DecryptionSession
from .key_escrow import KeyEscrow
from .upload import ImageUploadService

__all__ = [
    "AccessRegistry",
    "KeyEscrow",
    "DecryptionOrchestrator",
    "DecryptionSession",
    "ImageUploadService",
]

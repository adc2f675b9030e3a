"""
Domain Models
画像・認可・復号ステートマシンのドメインモデル
"""

from .authorization import (
    SignedAuthorization,
    StructuredAuthorization,
    address_from_verify_key,
    normalize_address,
)
from .decryption import (
    DecryptionSnapshot,
    DecryptionState,
    StateTransition,
)
from .image import (
    AuthorizationEntry,
    EncryptedBlob,
    EncryptionKey,
    ImageContext,
    ImageInfo,
    ImageRecord,
    UploadResult,
)

__all__ = [
    # 画像
    "EncryptionKey",
    "EncryptedBlob",
    "ImageContext",
    "ImageInfo",
    "ImageRecord",
    "AuthorizationEntry",
    "UploadResult",
    # 認可
    "StructuredAuthorization",
    "SignedAuthorization",
    "address_from_verify_key",
    "normalize_address",
    # 復号
    "DecryptionState",
    "DecryptionSnapshot",
    "StateTransition",
]

"""
Secure Image Domain Layer
コアビジネスロジックとドメインモデル
"""

from __future__ import annotations

from .models import (
    DecryptionSnapshot,
    DecryptionState,
    EncryptedBlob,
    EncryptionKey,
    ImageContext,
    ImageInfo,
    ImageRecord,
    SignedAuthorization,
    StructuredAuthorization,
    UploadResult,
)

__all__ = [
    # 画像
    "EncryptionKey",
    "EncryptedBlob",
    "ImageContext",
    "ImageInfo",
    "ImageRecord",
    "UploadResult",
    # 認可
    "StructuredAuthorization",
    "SignedAuthorization",
    # 復号
    "DecryptionState",
    "DecryptionSnapshot",
]

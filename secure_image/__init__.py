"""
Secure Image - 機密画像の保管とアクセス制御

- クライアント側暗号化: 画像は AEAD で暗号化してから Blob Store に置く
- 鍵エスクロー: 画像鍵は Confidential Compute で準同型暗号化して台帳に記録
- アクセス制御: 追記専用の認可セット、署名付き・期限付きの構造化認可で鍵を解放
"""

from importlib.metadata import PackageNotFoundError, version
from pathlib import Path
import tomllib

try:
    __version__: str = version("secure-image")
except PackageNotFoundError:
    _pyproject = Path(__file__).resolve().parent.parent / "pyproject.toml"
    with _pyproject.open("rb") as _f:
        __version__ = tomllib.load(_f)["project"]["version"]

# ===== Core =====
from .core.encryption import ImageCipher
from .core.exceptions import (
    AuthorizationError,
    DecodeError,
    ExternalServiceError,
    IntegrityError,
    NotFoundError,
    SecureImageError,
    ValidationError,
)
from .core.identity import RequesterIdentity
from .core.key_management import KeyManager

# ===== Domain Models =====
from .domain.models import (
    DecryptionSnapshot,
    DecryptionState,
    EncryptedBlob,
    EncryptionKey,
    ImageContext,
    ImageInfo,
    SignedAuthorization,
    StructuredAuthorization,
    UploadResult,
)

# ===== Ports (Interfaces) =====
from .domain.ports import (
    IBlobStore,
    IConfidentialCompute,
    ILedger,
)

# ===== Domain Services =====
from .domain.services import (
    AccessRegistry,
    DecryptionOrchestrator,
    DecryptionSession,
    ImageUploadService,
    KeyEscrow,
)


# ===== Container (lazy import) =====
# アダプターはネットワーク依存があるため遅延インポート
def get_container():
    from .core.dependencies import get_container as _get_container

    return _get_container()


def create_in_memory_container(**kwargs):
    from .core.dependencies import DependencyContainer

    return DependencyContainer.in_memory(**kwargs)


__all__ = [
    # Version
    "__version__",
    # Core
    "KeyManager",
    "ImageCipher",
    "RequesterIdentity",
    # Errors
    "SecureImageError",
    "ValidationError",
    "NotFoundError",
    "AuthorizationError",
    "IntegrityError",
    "DecodeError",
    "ExternalServiceError",
    # Domain Models
    "EncryptionKey",
    "EncryptedBlob",
    "ImageContext",
    "ImageInfo",
    "UploadResult",
    "StructuredAuthorization",
    "SignedAuthorization",
    "DecryptionState",
    "DecryptionSnapshot",
    # Ports
    "IBlobStore",
    "IConfidentialCompute",
    "ILedger",
    # Domain Services
    "AccessRegistry",
    "KeyEscrow",
    "DecryptionOrchestrator",
    "DecryptionSession",
    "ImageUploadService",
    # Container (lazy)
    "get_container",
    "create_in_memory_container",
]

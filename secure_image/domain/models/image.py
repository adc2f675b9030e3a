"""
画像モデル
暗号鍵・暗号化Blob・台帳上の画像レコードを定義
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any, ClassVar

import nacl.encoding
import nacl.hash

from ...core.exceptions import IntegrityError, ValidationError
from .authorization import is_hex_string, normalize_address

# 暗号化Blobエンベロープ: MAGIC | VERSION | NONCE(24) | CIPHERTEXT(+TAG)
ENVELOPE_MAGIC = b"SIMG"
ENVELOPE_VERSION = 1
NONCE_SIZE = 24


def envelope_header(version: int = ENVELOPE_VERSION) -> bytes:
    """エンベロープヘッダ（AEAD の関連データとしても使用）"""
    return ENVELOPE_MAGIC + bytes([version])


@dataclass(frozen=True, repr=False)
class EncryptionKey:
    """
    画像ごとの対称鍵

    160ビット。Confidential Compute の暗号化可能型（eaddress）に合わせて
    0x + 40桁hex で表現する。平文のまま永続化してはならない。
    """

    value: bytes

    SIZE: ClassVar[int] = 20

    def __post_init__(self):
        if not isinstance(self.value, bytes) or len(self.value) != self.SIZE:
            raise ValidationError(
                f"EncryptionKey must be exactly {self.SIZE} bytes",
                field="key",
            )

    @property
    def hex(self) -> str:
        return "0x" + self.value.hex()

    @classmethod
    def from_hex(cls, value: str) -> "EncryptionKey":
        """0x付きhex文字列から復元"""
        if not is_hex_string(value, cls.SIZE):
            raise ValidationError("EncryptionKey must be 0x + 40 hex characters", field="key")
        return cls(bytes.fromhex(value[2:]))

    def __repr__(self) -> str:
        return "EncryptionKey(<redacted>)"


@dataclass
class EncryptedBlob:
    """
    暗号化された画像Blob

    content_hash は Blob Store がエンベロープのバイト列から導出する。
    暗号文は公開されるため nonce は必ず暗号文と一緒に運ぶ。
    """

    ciphertext: bytes
    nonce: bytes
    content_hash: str | None = None
    version: int = ENVELOPE_VERSION

    def to_bytes(self) -> bytes:
        """Blob Store に保存するエンベロープ形式へ変換"""
        return envelope_header(self.version) + self.nonce + self.ciphertext

    @classmethod
    def from_bytes(cls, data: bytes, content_hash: str | None = None) -> "EncryptedBlob":
        """
        エンベロープを解析

        Raises:
            IntegrityError: ヘッダ破損・切り詰め
        """
        header_len = len(ENVELOPE_MAGIC) + 1
        if len(data) < header_len + NONCE_SIZE or not data.startswith(ENVELOPE_MAGIC):
            raise IntegrityError("Encrypted blob envelope is malformed",
                                 details={"content_hash": content_hash})
        version = data[len(ENVELOPE_MAGIC)]
        if version != ENVELOPE_VERSION:
            raise IntegrityError(f"Unsupported envelope version: {version}",
                                 details={"content_hash": content_hash})
        nonce = data[header_len:header_len + NONCE_SIZE]
        ciphertext = data[header_len + NONCE_SIZE:]
        return cls(ciphertext=ciphertext, nonce=nonce, content_hash=content_hash, version=version)


@dataclass(frozen=True)
class ImageContext:
    """
    鍵エスクローの束縛コンテキスト

    エスクローされた鍵暗号文と証明はこのコンテキストに束縛され、
    別の画像に対して再利用（リプレイ）できない。
    """

    contract_address: str
    owner_address: str
    content_hash: str

    def __post_init__(self):
        object.__setattr__(self, "contract_address", normalize_address(self.contract_address))
        object.__setattr__(self, "owner_address", normalize_address(self.owner_address))
        if not self.content_hash:
            raise ValidationError("content_hash is required", field="content_hash")

    def to_dict(self) -> dict[str, str]:
        return {
            "contract_address": self.contract_address,
            "owner_address": self.owner_address,
            "content_hash": self.content_hash,
        }

    def digest(self) -> bytes:
        """束縛用の32バイトダイジェスト"""
        material = "|".join([self.contract_address, self.owner_address, self.content_hash])
        return nacl.hash.blake2b(
            material.encode("utf-8"),
            digest_size=32,
            person=b"secimg-context",
            encoder=nacl.encoding.RawEncoder,
        )


@dataclass(frozen=True)
class ImageInfo:
    """getImageInfo の戻り値"""

    owner: str
    content_hash: str
    created_at: datetime

    def to_dict(self) -> dict[str, Any]:
        return {
            "owner": self.owner,
            "content_hash": self.content_hash,
            "created_at": self.created_at.isoformat(),
        }


@dataclass(frozen=True)
class ImageRecord:
    """台帳上の画像レコード（追記のみ・不変）"""

    image_id: int
    owner: str
    content_hash: str
    encrypted_key_handle: str
    created_at: datetime

    @property
    def info(self) -> ImageInfo:
        return ImageInfo(owner=self.owner, content_hash=self.content_hash, created_at=self.created_at)


@dataclass(frozen=True)
class AuthorizationEntry:
    """認可エントリ（削除操作は存在しない）"""

    image_id: int
    grantee: str
    granted_at: datetime


@dataclass
class UploadResult:
    """アップロードパイプラインの結果（画像鍵は含めない）"""

    image_id: int
    content_hash: str
    owner: str

"""
リクエスタのアイデンティティ
Ed25519 署名鍵と、その検証鍵から導出されるアドレス

構造化認可への署名はウォレットの代わりにこの鍵で行う。
"""

import os
from pathlib import Path

import nacl.encoding
from nacl.signing import SigningKey

from ..domain.models.authorization import (
    SignedAuthorization,
    StructuredAuthorization,
    address_from_verify_key,
)
from .exceptions import ConfigurationError


class RequesterIdentity:
    """
    署名用アイデンティティ

    秘密鍵は絶対にログ出力しない。
    """

    def __init__(self, signing_key: SigningKey):
        self._signing_key = signing_key

    @classmethod
    def generate(cls) -> "RequesterIdentity":
        return cls(SigningKey.generate())

    @classmethod
    def from_seed(cls, seed: bytes) -> "RequesterIdentity":
        """32バイトシードから決定的に生成（テスト・デモ用）"""
        return cls(SigningKey(seed))

    @property
    def verify_key(self) -> bytes:
        return self._signing_key.verify_key.encode()

    @property
    def address(self) -> str:
        return address_from_verify_key(self.verify_key)

    def sign(self, authorization: StructuredAuthorization) -> SignedAuthorization:
        """構造化認可に署名"""
        signed = self._signing_key.sign(authorization.canonical_bytes())
        return SignedAuthorization(
            authorization=authorization,
            signature=signed.signature,
            verify_key=self.verify_key,
        )

    def save(self, path: str | Path) -> None:
        """鍵ファイルに保存（パーミッション 0o600）"""
        key_path = Path(path)
        old_umask = os.umask(0o077)
        try:
            key_path.write_text(
                self._signing_key.encode(encoder=nacl.encoding.HexEncoder).decode("ascii")
            )
            os.chmod(key_path, 0o600)
        finally:
            os.umask(old_umask)

    @classmethod
    def load(cls, path: str | Path) -> "RequesterIdentity":
        """鍵ファイルから読み込み（パーミッションが緩い場合は拒否）"""
        key_path = Path(path)
        if not key_path.exists():
            raise ConfigurationError(f"Identity file not found: {key_path}")

        mode = key_path.stat().st_mode & 0o777
        if mode != 0o600:
            raise ConfigurationError(
                f"Identity file permissions are unsafe: {oct(mode)}. Use 0o600."
            )

        try:
            seed = bytes.fromhex(key_path.read_text().strip())
            return cls(SigningKey(seed))
        except ValueError as e:
            raise ConfigurationError(f"Identity file is malformed: {key_path}") from e

    def __repr__(self) -> str:
        return f"RequesterIdentity(address={self.address})"


def load_or_create_identity(path: str | Path, create: bool = False) -> RequesterIdentity:
    """アイデンティティを読み込み、必要なら生成して保存"""
    key_path = Path(path)
    if key_path.exists() or not create:
        return RequesterIdentity.load(key_path)

    identity = RequesterIdentity.generate()
    identity.save(key_path)
    return identity

#!/usr/bin/env python3
"""
画像の対称暗号化
PyNaCl の XChaCha20-Poly1305 AEAD による認証付き暗号

- 呼び出しごとに新しい24バイトnonce（暗号文と一緒に運ぶ）
- 改ざんは復号時に IntegrityError として検知
- 認証後の平文が画像コンテナでなければ DecodeError
"""

import io
import struct

import nacl.encoding
import nacl.hash
import nacl.secret
import nacl.utils
from nacl.exceptions import CryptoError
from PIL import Image, UnidentifiedImageError

from ..domain.models.image import (
    ENVELOPE_VERSION,
    NONCE_SIZE,
    EncryptedBlob,
    EncryptionKey,
    envelope_header,
)
from .exceptions import DecodeError, IntegrityError, ValidationError
from .logging import get_logger

logger = get_logger(__name__)

# 受け付ける画像コンテナ（Pillow のフォーマット名）
SUPPORTED_IMAGE_FORMATS = frozenset(["PNG", "JPEG", "GIF", "WEBP", "BMP", "TIFF"])

_KDF_PERSON = b"secimg-aead-v1"


def validate_image(data: bytes) -> str:
    """
    画像コンテナとして解釈できるか検証

    Returns:
        str: 検出したフォーマット名

    Raises:
        DecodeError: 画像として不正、または未対応フォーマット
    """
    try:
        with Image.open(io.BytesIO(data)) as img:
            image_format = img.format
            img.verify()
    except (UnidentifiedImageError, Image.DecompressionBombError, OSError,
            SyntaxError, ValueError, EOFError, struct.error) as e:
        raise DecodeError(f"Data is not a valid image container: {type(e).__name__}") from e

    if image_format not in SUPPORTED_IMAGE_FORMATS:
        raise DecodeError(f"Unsupported image format: {image_format}",
                          details={"format": image_format})
    return image_format


class ImageCipher:
    """
    画像暗号化

    160ビットの画像鍵から BLAKE2b で256ビットの AEAD 鍵を導出する。
    タグ検証は libsodium の定数時間比較で行い、フォーマット検査は
    認証成功後にのみ実行する。
    """

    def _derive_cipher_key(self, key: EncryptionKey) -> bytes:
        return nacl.hash.blake2b(
            key.value,
            digest_size=nacl.secret.Aead.KEY_SIZE,
            person=_KDF_PERSON,
            encoder=nacl.encoding.RawEncoder,
        )

    def encrypt(self, plaintext: bytes, key: EncryptionKey) -> tuple[bytes, bytes]:
        """
        画像バイト列を暗号化

        Args:
            plaintext: 画像バイト列
            key: 画像鍵

        Returns:
            tuple[bytes, bytes]: (ciphertext, nonce)
        """
        if not isinstance(plaintext, bytes):
            raise ValidationError("plaintext must be bytes", field="plaintext")

        aead = nacl.secret.Aead(self._derive_cipher_key(key))
        nonce = nacl.utils.random(NONCE_SIZE)
        encrypted = aead.encrypt(plaintext, envelope_header(ENVELOPE_VERSION), nonce)
        return encrypted.ciphertext, encrypted.nonce

    def decrypt(self, ciphertext: bytes, nonce: bytes, key: EncryptionKey,
                version: int = ENVELOPE_VERSION) -> bytes:
        """
        暗号文を復号

        Args:
            ciphertext: 暗号文（タグ込み）
            nonce: 暗号化時のnonce
            key: 画像鍵
            version: エンベロープのバージョン（関連データ）

        Returns:
            bytes: 画像バイト列

        Raises:
            IntegrityError: 認証タグが検証できない
            DecodeError: 平文が画像コンテナとして不正
        """
        if len(nonce) != NONCE_SIZE:
            raise IntegrityError("Nonce has an unexpected length")
        if len(ciphertext) < nacl.secret.Aead.MACBYTES:
            raise IntegrityError("Ciphertext is shorter than the authentication tag")

        aead = nacl.secret.Aead(self._derive_cipher_key(key))
        try:
            plaintext = aead.decrypt(ciphertext, envelope_header(version), nonce)
        except CryptoError as e:
            logger.warning("Ciphertext failed authentication")
            raise IntegrityError("Ciphertext failed authentication") from e

        validate_image(plaintext)
        return plaintext

    def seal(self, plaintext: bytes, key: EncryptionKey) -> EncryptedBlob:
        """暗号化してエンベロープ化（content_hash は Blob Store 保存後に決まる）"""
        ciphertext, nonce = self.encrypt(plaintext, key)
        return EncryptedBlob(ciphertext=ciphertext, nonce=nonce)

    def open(self, blob: EncryptedBlob, key: EncryptionKey) -> bytes:
        """エンベロープを復号"""
        return self.decrypt(blob.ciphertext, blob.nonce, key, version=blob.version)

"""
画像鍵管理

- 画像ごとに新しい160ビット鍵を生成
- 一意性は160ビット乱数の誕生日境界に依存（外部の重複チェックはしない）
- 鍵は絶対にログ出力しない
"""

import nacl.utils

from ..domain.models.image import EncryptionKey
from .exceptions import KeyGenerationError
from .logging import get_logger

logger = get_logger(__name__)


class KeyManager:
    """
    画像鍵ジェネレータ

    libsodium の CSPRNG（nacl.utils.random）から鍵を引く。
    エントロピー源が使えない場合は致命的エラーとし、リトライしない。
    """

    def generate_key(self) -> EncryptionKey:
        """
        新しい画像鍵を生成

        Returns:
            EncryptionKey: 0x + 40桁hex の160ビット鍵

        Raises:
            KeyGenerationError: エントロピー源が利用できない
        """
        try:
            raw = nacl.utils.random(EncryptionKey.SIZE)
        except Exception as e:
            logger.critical(f"Entropy source unavailable: {type(e).__name__}")
            raise KeyGenerationError("Secure random source is unavailable") from e

        if len(raw) != EncryptionKey.SIZE:
            raise KeyGenerationError("Secure random source returned a short read")

        return EncryptionKey(raw)

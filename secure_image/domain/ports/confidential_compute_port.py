"""
Confidential Compute ポート
準同型暗号サービス（FHE コプロセッサ / リレイヤー）へのアクセスを抽象化

平文の鍵がサービス外に出るのは、認可されたリクエスタの
一時公開鍵に封印された形でのみ。
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field

from ..models.authorization import SignedAuthorization
from ..models.image import ImageContext


@dataclass(frozen=True)
class EscrowedKey:
    """encryptValue の結果（不透明なハンドルと整形式証明）"""
    handle: str
    proof: bytes = field(repr=False)


@dataclass(frozen=True)
class HandleContractPair:
    """復号対象のハンドルとそれを保持するコントラクト"""
    handle: str
    contract_address: str


class IConfidentialCompute(ABC):
    """
    Confidential Compute インターフェース

    クライアントは呼び出し側が生成・注入し、ライフサイクルも呼び出し側が持つ。
    """

    @abstractmethod
    async def encrypt_value(self, value: str, context: ImageContext) -> EscrowedKey:
        """
        値を準同型暗号化し、コンテキストに束縛する

        Args:
            value: 0x付きhexの値（eaddress）
            context: 束縛先のコンテキスト

        Returns:
            EscrowedKey: ハンドルと証明
        """

    @abstractmethod
    async def user_decrypt(
        self,
        handles: list[HandleContractPair],
        signed_authorization: SignedAuthorization,
        user_address: str,
    ) -> dict[str, bytes]:
        """
        認可されたユーザー向けに復号

        サービスは ACL・署名・有効期間を検証し、値をリクエスタの
        一時公開鍵（authorization.public_key）に封印して返す。

        Args:
            handles: 復号対象
            signed_authorization: リクエスタ署名済みの構造化認可
            user_address: リクエスタのアドレス

        Returns:
            dict[str, bytes]: ハンドル → 封印された値

        Raises:
            AuthorizationError: いずれかの検証に失敗
            ExternalServiceError: サービスに到達できない
        """

    @abstractmethod
    async def health_check(self) -> bool:
        """
        サービスの健全性チェック

        Returns:
            bool: 正常に動作しているか
        """

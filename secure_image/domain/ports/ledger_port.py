"""
台帳ポート
SecureImageManager コントラクトの関数群を抽象化

書き込み（uploadImage / authorizeUser）の直列化は台帳自身の
トランザクション順序に任せる。
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

from ..models.image import ImageInfo


@dataclass(frozen=True)
class ImageUploaded:
    """ImageUploaded(imageId, hash, uploader) イベント"""
    image_id: int
    hash: str
    uploader: str

    name = "ImageUploaded"

    def to_dict(self) -> dict[str, Any]:
        return {"image_id": self.image_id, "hash": self.hash, "uploader": self.uploader}


@dataclass(frozen=True)
class LedgerReceipt:
    """トランザクションレシート"""
    tx_hash: str
    events: tuple[ImageUploaded, ...] = field(default_factory=tuple)

    def find_event(self, name: str) -> ImageUploaded | None:
        for event in self.events:
            if event.name == name:
                return event
        return None


class ILedger(ABC):
    """
    台帳インターフェース

    実装はインメモリ台帳、JSON-RPC ゲートウェイ等で切り替え可能。
    """

    @property
    @abstractmethod
    def contract_address(self) -> str:
        """コントラクトアドレス"""

    @abstractmethod
    async def upload_image(
        self, encrypted_key_handle: str, proof: bytes, content_hash: str, *, sender: str
    ) -> LedgerReceipt:
        """
        画像を登録

        Raises:
            ValidationError: 証明がハンドル・コンテキストに対して検証できない、またはハンドルが既に別のレコードに結び付いている
        """

    @abstractmethod
    async def get_image_info(self, image_id: int) -> ImageInfo:
        """
        画像情報を取得

        Raises:
            NotFoundError: 未知の imageId
        """

    @abstractmethod
    async def get_encrypted_password(self, image_id: int) -> str:
        """
        暗号化鍵ハンドルを取得

        Raises:
            NotFoundError: 未知の imageId
        """

    @abstractmethod
    async def authorize_user(self, image_id: int, user: str, *, sender: str) -> LedgerReceipt:
        """
        ユーザーを認可（オーナーのみ、冪等）

        Raises:
            AuthorizationError: sender がオーナーでない
            NotFoundError: 未知の imageId
        """

    @abstractmethod
    async def is_authorized(self, image_id: int, user: str) -> bool:
        """認可されているか（オーナーは常に True）"""

    @abstractmethod
    async def get_user_images(self, owner: str) -> list[int]:
        """オーナーの画像ID一覧（作成順）"""

    @abstractmethod
    async def get_total_images(self) -> int:
        """全画像数"""

"""
Blob Store ポート
コンテンツアドレス型ストレージ

サーバーは暗号化Blobをそのまま保存し、内容を解釈しない。
識別子（content_hash）はBlobのバイト列から決定的に導出される。
"""

from abc import ABC, abstractmethod


class IBlobStore(ABC):
    """
    コンテンツアドレス型 Blob Store インターフェース

    実装はインメモリ、ローカルファイル、IPFS 等で切り替え可能。
    """

    @abstractmethod
    async def put(self, data: bytes) -> str:
        """
        Blobを保存

        Args:
            data: 保存するバイト列（暗号化エンベロープ）

        Returns:
            str: content_hash
        """

    @abstractmethod
    async def get(self, content_hash: str) -> bytes:
        """
        Blobを取得

        Args:
            content_hash: put が返した識別子

        Returns:
            bytes: 保存されたバイト列

        Raises:
            NotFoundError: Blob が存在しない
            ExternalServiceError: ストアに到達できない
        """

    @abstractmethod
    async def exists(self, content_hash: str) -> bool:
        """
        Blobが存在するかチェック

        Args:
            content_hash: 識別子

        Returns:
            bool: 存在するか
        """

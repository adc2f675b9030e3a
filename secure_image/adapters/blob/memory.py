"""
インメモリ Blob Store
ネットワークなしでテストするための決定的な実装
"""

import hashlib

from ...core.exceptions import NotFoundError
from ...domain.ports.blob_store_port import IBlobStore


class InMemoryBlobStore(IBlobStore):
    """
    インメモリ Blob Store

    content_hash は SHA-256 の hex。同じ内容は同じ識別子になる。
    """

    def __init__(self):
        self._blobs: dict[str, bytes] = {}

    @staticmethod
    def compute_hash(data: bytes) -> str:
        return hashlib.sha256(data).hexdigest()

    async def put(self, data: bytes) -> str:
        content_hash = self.compute_hash(data)
        self._blobs[content_hash] = bytes(data)
        return content_hash

    async def get(self, content_hash: str) -> bytes:
        try:
            return self._blobs[content_hash]
        except KeyError:
            raise NotFoundError(f"Blob not found: {content_hash}",
                                details={"content_hash": content_hash}) from None

    async def exists(self, content_hash: str) -> bool:
        return content_hash in self._blobs

    def overwrite(self, content_hash: str, data: bytes) -> None:
        """保存済みBlobを直接書き換える（改ざんシミュレーション用）"""
        if content_hash not in self._blobs:
            raise NotFoundError(f"Blob not found: {content_hash}")
        self._blobs[content_hash] = bytes(data)

    def __len__(self) -> int:
        return len(self._blobs)

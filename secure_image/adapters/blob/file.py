"""
ファイル Blob Store アダプター

暗号化エンベロープをそのままファイルに保存する。
サーバーは内容を復号せず、暗号文として保存するのみ。
"""

from __future__ import annotations

import asyncio
import hashlib
import os
import tempfile
from pathlib import Path

from ...core.exceptions import IntegrityError, NotFoundError, ValidationError
from ...core.logging import get_logger
from ...domain.ports.blob_store_port import IBlobStore

logger = get_logger(__name__)

_HEX_DIGITS = frozenset("0123456789abcdef")


class FileBlobStore(IBlobStore):
    """
    ファイル Blob Store

    1 Blob = 1 ファイル（<sha256>.blob）。読み込み時にハッシュを再検証する。
    """

    def __init__(self, data_dir: str = "data/blobs"):
        self.data_dir = Path(data_dir)
        self.data_dir.mkdir(parents=True, exist_ok=True)
        logger.info(f"FileBlobStore initialized: {self.data_dir}")

    def _get_blob_path(self, content_hash: str) -> Path:
        """Blobファイルパスを取得"""
        # content_hash をファイル名として安全に使用
        if len(content_hash) != 64 or not set(content_hash) <= _HEX_DIGITS:
            raise ValidationError("content_hash must be a sha256 hex digest", field="content_hash")
        return self.data_dir / f"{content_hash}.blob"

    def _write(self, path: Path, data: bytes) -> None:
        # 一時ファイルは書き込みごとに一意
        tmp = tempfile.NamedTemporaryFile(
            dir=self.data_dir, prefix=f"{path.stem}.", suffix=".tmp", delete=False
        )
        try:
            with tmp:
                tmp.write(data)
            os.replace(tmp.name, path)
        except OSError:
            Path(tmp.name).unlink(missing_ok=True)
            raise

    async def put(self, data: bytes) -> str:
        content_hash = hashlib.sha256(data).hexdigest()
        blob_path = self._get_blob_path(content_hash)

        if not blob_path.exists():
            await asyncio.to_thread(self._write, blob_path, data)
            logger.debug(f"Saved blob: {content_hash}")

        return content_hash

    async def get(self, content_hash: str) -> bytes:
        blob_path = self._get_blob_path(content_hash)

        if not blob_path.exists():
            raise NotFoundError(f"Blob not found: {content_hash}",
                                details={"content_hash": content_hash})

        data = await asyncio.to_thread(blob_path.read_bytes)
        if hashlib.sha256(data).hexdigest() != content_hash:
            logger.error(f"Blob content does not match its hash: {content_hash}")
            raise IntegrityError("Stored blob does not match its content hash",
                                 details={"content_hash": content_hash})
        return data

    async def exists(self, content_hash: str) -> bool:
        try:
            return self._get_blob_path(content_hash).exists()
        except ValidationError:
            return False

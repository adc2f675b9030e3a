"""
IPFS Blob Store アダプター
IPFS HTTP API (Kubo) への接続実装

content_hash は IPFS の CID（内容から決定的に導出される）。
"""

import json

import aiohttp

from ...core.exceptions import ExternalServiceError, NotFoundError
from ...core.logging import get_logger
from ...domain.ports.blob_store_port import IBlobStore

logger = get_logger(__name__)

SERVICE_NAME = "ipfs"


class IPFSBlobStore(IBlobStore):
    """
    IPFS Blob Store

    セッションを渡された場合はそれを使い、ライフサイクルは呼び出し側が持つ。
    渡されない場合は呼び出しごとにセッションを作る。
    """

    def __init__(
        self,
        api_url: str = "http://127.0.0.1:5001",
        timeout: float = 60.0,
        session: aiohttp.ClientSession | None = None,
    ):
        self.api_url = api_url.rstrip("/")
        self.timeout = timeout
        self._session = session

    async def _request(
        self,
        path: str,
        params: dict[str, str],
        data: aiohttp.FormData | None = None,
    ) -> tuple[int, bytes]:
        """IPFS API を呼び出し (status, body) を返す（API は全て POST）"""
        url = f"{self.api_url}/api/v0/{path}"

        if self._session is not None:
            async with self._session.post(url, params=params, data=data) as response:
                return response.status, await response.read()

        timeout = aiohttp.ClientTimeout(total=self.timeout)
        async with aiohttp.ClientSession(timeout=timeout) as session:
            async with session.post(url, params=params, data=data) as response:
                return response.status, await response.read()

    async def put(self, data: bytes) -> str:
        form = aiohttp.FormData()
        form.add_field("file", data, filename="blob", content_type="application/octet-stream")

        status, body = await self._request(
            "add", {"cid-version": "1", "hash": "sha2-256", "pin": "true"}, form
        )
        if status != 200:
            raise ExternalServiceError(
                f"IPFS add failed: HTTP {status} - {body[:200]!r}",
                service_name=SERVICE_NAME,
                status_code=status,
            )

        try:
            content_hash = json.loads(body)["Hash"]
        except (ValueError, KeyError) as e:
            raise ExternalServiceError("Invalid response structure from IPFS add",
                                       service_name=SERVICE_NAME) from e

        logger.debug(f"Added blob to IPFS: {content_hash}")
        return content_hash

    async def get(self, content_hash: str) -> bytes:
        status, body = await self._request("cat", {"arg": content_hash})
        if status == 200:
            return body

        # Kubo は未知・不正な CID を HTTP 500 + メッセージで返す
        message = body[:200].decode("utf-8", errors="replace")
        if status in (404, 500) and ("not found" in message or "invalid" in message or "no link" in message):
            raise NotFoundError(f"Blob not found: {content_hash}",
                                details={"content_hash": content_hash})
        raise ExternalServiceError(
            f"IPFS cat failed: HTTP {status} - {message}",
            service_name=SERVICE_NAME,
            status_code=status,
        )

    async def exists(self, content_hash: str) -> bool:
        try:
            await self.get(content_hash)
        except NotFoundError:
            return False
        return True

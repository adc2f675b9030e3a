"""
JSON-RPC 台帳アダプター
SecureImageManager ゲートウェイ（JSON-RPC 2.0）への接続実装

メソッド名は secureImage_<コントラクト関数名>。
"""

import itertools
from datetime import datetime, timezone
from typing import Any

import aiohttp
from pydantic import BaseModel, ValidationError as PydanticValidationError

from ...core.exceptions import (
    AuthorizationError,
    ExternalServiceError,
    NotFoundError,
    SecureImageError,
    ValidationError,
)
from ...core.logging import get_logger
from ...domain.models.authorization import normalize_address
from ...domain.models.image import ImageInfo
from ...domain.ports.ledger_port import ILedger, ImageUploaded, LedgerReceipt

logger = get_logger(__name__)

SERVICE_NAME = "ledger"

# ゲートウェイ定義のエラーコード
ERROR_NOT_FOUND = -32004
ERROR_UNAUTHORIZED = -32003
ERROR_INVALID_PARAMS = -32602


class ImageInfoResult(BaseModel):
    owner: str
    content_hash: str
    created_at: int


class EventResult(BaseModel):
    name: str
    image_id: int
    hash: str
    uploader: str


class ReceiptResult(BaseModel):
    tx_hash: str
    events: list[EventResult] = []


def error_for_rpc(code: int, message: str) -> SecureImageError:
    """JSON-RPC エラーをドメイン例外に変換"""
    if code == ERROR_NOT_FOUND:
        return NotFoundError(message)
    if code == ERROR_UNAUTHORIZED:
        return AuthorizationError(message)
    if code == ERROR_INVALID_PARAMS:
        return ValidationError(message)
    return ExternalServiceError(f"Ledger RPC error {code}: {message}", service_name=SERVICE_NAME)


class JsonRpcLedger(ILedger):
    """
    JSON-RPC 台帳クライアント

    セッションを渡された場合はそれを使い、ライフサイクルは呼び出し側が持つ。
    """

    def __init__(
        self,
        url: str,
        contract_address: str,
        timeout: float = 60.0,
        session: aiohttp.ClientSession | None = None,
    ):
        self.url = url
        self._contract_address = normalize_address(contract_address)
        self.timeout = timeout
        self._session = session
        self._ids = itertools.count(1)

    @property
    def contract_address(self) -> str:
        return self._contract_address

    async def _post(self, payload: dict[str, Any]) -> tuple[int, Any]:
        async def send(session: aiohttp.ClientSession) -> tuple[int, Any]:
            async with session.post(self.url, json=payload) as response:
                if response.status == 200:
                    return response.status, await response.json()
                return response.status, await response.text()

        if self._session is not None:
            return await send(self._session)

        timeout = aiohttp.ClientTimeout(total=self.timeout)
        async with aiohttp.ClientSession(timeout=timeout) as session:
            return await send(session)

    async def _call(self, function: str, params: dict[str, Any]) -> Any:
        """secureImage_<function> を呼び出して result を返す"""
        payload = {
            "jsonrpc": "2.0",
            "id": next(self._ids),
            "method": f"secureImage_{function}",
            "params": {"contract": self._contract_address, **params},
        }
        status, data = await self._post(payload)
        if status != 200:
            raise ExternalServiceError(
                f"Ledger RPC failed: HTTP {status} - {data}",
                service_name=SERVICE_NAME,
                status_code=status,
            )
        if not isinstance(data, dict):
            raise ExternalServiceError("Invalid JSON-RPC response", service_name=SERVICE_NAME)

        error = data.get("error")
        if error:
            raise error_for_rpc(error.get("code", 0), error.get("message", "unknown error"))
        if "result" not in data:
            raise ExternalServiceError("JSON-RPC response has no result", service_name=SERVICE_NAME)
        return data["result"]

    @staticmethod
    def _parse(model: type[BaseModel], result: Any) -> Any:
        try:
            return model.model_validate(result)
        except PydanticValidationError as e:
            raise ExternalServiceError("Invalid result structure from ledger",
                                       service_name=SERVICE_NAME) from e

    def _receipt(self, result: Any) -> LedgerReceipt:
        parsed = self._parse(ReceiptResult, result)
        events = tuple(
            ImageUploaded(image_id=e.image_id, hash=e.hash, uploader=e.uploader.lower())
            for e in parsed.events
            if e.name == ImageUploaded.name
        )
        return LedgerReceipt(tx_hash=parsed.tx_hash, events=events)

    # ===== 書き込み =====

    async def upload_image(
        self, encrypted_key_handle: str, proof: bytes, content_hash: str, *, sender: str
    ) -> LedgerReceipt:
        result = await self._call("uploadImage", {
            "encrypted_password": encrypted_key_handle,
            "input_proof": "0x" + proof.hex(),
            "hash": content_hash,
            "from": sender,
        })
        return self._receipt(result)

    async def authorize_user(self, image_id: int, user: str, *, sender: str) -> LedgerReceipt:
        result = await self._call("authorizeUser", {
            "image_id": image_id, "user": user, "from": sender,
        })
        return self._receipt(result)

    # ===== 読み取り =====

    async def get_image_info(self, image_id: int) -> ImageInfo:
        result = await self._call("getImageInfo", {"image_id": image_id})
        parsed = self._parse(ImageInfoResult, result)
        return ImageInfo(
            owner=parsed.owner.lower(),
            content_hash=parsed.content_hash,
            created_at=datetime.fromtimestamp(parsed.created_at, tz=timezone.utc),
        )

    async def get_encrypted_password(self, image_id: int) -> str:
        result = await self._call("getEncryptedPassword", {"image_id": image_id})
        if not isinstance(result, str):
            raise ExternalServiceError("Invalid handle from ledger", service_name=SERVICE_NAME)
        return result.lower()

    async def is_authorized(self, image_id: int, user: str) -> bool:
        return bool(await self._call("isAuthorized", {"image_id": image_id, "user": user}))

    async def get_user_images(self, owner: str) -> list[int]:
        result = await self._call("getUserImages", {"user": owner})
        return [int(image_id) for image_id in result]

    async def get_total_images(self) -> int:
        return int(await self._call("getTotalImages", {}))

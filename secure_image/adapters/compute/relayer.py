"""
リレイヤー Confidential Compute アダプター
FHE リレイヤーの HTTP API への接続実装

- POST /v1/encrypt       値の暗号化と入力証明の発行
- POST /v1/user-decrypt  署名済み認可によるユーザー復号
- GET  /v1/health        ヘルスチェック
"""

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
from ...domain.models.authorization import SignedAuthorization
from ...domain.models.image import ImageContext
from ...domain.ports.confidential_compute_port import (
    EscrowedKey,
    HandleContractPair,
    IConfidentialCompute,
)

logger = get_logger(__name__)

SERVICE_NAME = "confidential_compute"


class EncryptResponse(BaseModel):
    """/v1/encrypt のレスポンス"""
    handle: str
    proof: str


class UserDecryptResponse(BaseModel):
    """/v1/user-decrypt のレスポンス（ハンドル → 封印値の hex）"""
    results: dict[str, str]


def _decode_hex(value: str) -> bytes:
    return bytes.fromhex(value.removeprefix("0x"))


def error_for_status(status: int, message: str) -> SecureImageError:
    """HTTP ステータスをドメイン例外に変換"""
    if status == 404:
        return NotFoundError(message)
    if status in (401, 403):
        return AuthorizationError(message)
    if status in (400, 422):
        return ValidationError(message)
    return ExternalServiceError(message, service_name=SERVICE_NAME, status_code=status)


class RelayerConfidentialCompute(IConfidentialCompute):
    """
    リレイヤー Confidential Compute クライアント

    セッションを渡された場合はそれを使い、ライフサイクルは呼び出し側が持つ。
    """

    def __init__(
        self,
        base_url: str = "http://localhost:8080",
        timeout: float = 60.0,
        session: aiohttp.ClientSession | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._session = session

    async def _request(
        self, method: str, path: str, body: dict[str, Any] | None = None
    ) -> tuple[int, Any]:
        """リレイヤー API を呼び出し (status, JSON or text) を返す"""
        url = f"{self.base_url}{path}"

        async def send(session: aiohttp.ClientSession) -> tuple[int, Any]:
            async with session.request(method, url, json=body) as response:
                if response.status == 200:
                    return response.status, await response.json()
                return response.status, await response.text()

        if self._session is not None:
            return await send(self._session)

        timeout = aiohttp.ClientTimeout(total=self.timeout)
        async with aiohttp.ClientSession(timeout=timeout) as session:
            return await send(session)

    async def encrypt_value(self, value: str, context: ImageContext) -> EscrowedKey:
        status, data = await self._request(
            "POST", "/v1/encrypt", {"value": value, "context": context.to_dict()}
        )
        if status != 200:
            raise error_for_status(status, f"Relayer encrypt failed: HTTP {status} - {data}")

        try:
            parsed = EncryptResponse.model_validate(data)
            return EscrowedKey(handle=parsed.handle.lower(), proof=_decode_hex(parsed.proof))
        except (PydanticValidationError, ValueError) as e:
            raise ExternalServiceError("Invalid response structure from relayer encrypt",
                                       service_name=SERVICE_NAME) from e

    async def user_decrypt(
        self,
        handles: list[HandleContractPair],
        signed_authorization: SignedAuthorization,
        user_address: str,
    ) -> dict[str, bytes]:
        request_body = {
            "handles": [
                {"handle": pair.handle, "contract_address": pair.contract_address}
                for pair in handles
            ],
            "signed_authorization": signed_authorization.to_dict(),
            "user_address": user_address,
        }
        status, data = await self._request("POST", "/v1/user-decrypt", request_body)
        if status != 200:
            raise error_for_status(status, f"Relayer user decrypt failed: HTTP {status} - {data}")

        try:
            parsed = UserDecryptResponse.model_validate(data)
            results = {handle.lower(): _decode_hex(value) for handle, value in parsed.results.items()}
        except (PydanticValidationError, ValueError) as e:
            raise ExternalServiceError("Invalid response structure from relayer user decrypt",
                                       service_name=SERVICE_NAME) from e

        logger.debug(f"Relayer returned {len(results)} sealed value(s)")
        return results

    async def health_check(self) -> bool:
        try:
            status, _ = await self._request("GET", "/v1/health")
        except (aiohttp.ClientError, TimeoutError) as e:
            logger.warning(f"Relayer health check failed: {e}")
            return False
        return status == 200

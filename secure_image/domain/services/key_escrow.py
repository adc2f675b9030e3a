"""
鍵エスクロー
画像鍵を Confidential Compute に預け、認可されたリクエスタにのみ解放する

解放された鍵はリクエスタの一時 X25519 公開鍵に封印されて返り、
ここで開封される。平文の鍵がサービスと通信路に出ることはない。
"""

import time
from collections.abc import Callable

from nacl.exceptions import CryptoError
from nacl.public import PrivateKey, SealedBox

from ...core.exceptions import AuthorizationError, ExternalServiceError, NotFoundError, ValidationError
from ...core.external import DEFAULT_TIMEOUT, call_external
from ...core.logging import get_logger, log_business_event
from ..models.authorization import (
    DEFAULT_DURATION_DAYS,
    SignedAuthorization,
    StructuredAuthorization,
    normalize_address,
)
from ..models.image import EncryptionKey, ImageContext
from ..ports.confidential_compute_port import EscrowedKey, HandleContractPair, IConfidentialCompute
from .access_registry import AccessRegistry

logger = get_logger(__name__)

SERVICE_NAME = "confidential_compute"


class KeyEscrow:
    """
    鍵エスクロー

    Confidential Compute クライアントは呼び出し側が生成して注入する。
    """

    def __init__(
        self,
        compute: IConfidentialCompute,
        registry: AccessRegistry,
        timeout: float = DEFAULT_TIMEOUT,
        duration_days: int = DEFAULT_DURATION_DAYS,
        clock: Callable[[], float] = time.time,
    ):
        self.compute = compute
        self.registry = registry
        self.timeout = timeout
        self.duration_days = duration_days
        self._clock = clock

    async def escrow(self, key: EncryptionKey, owner_address: str,
                     image_context: ImageContext) -> EscrowedKey:
        """
        画像鍵を準同型暗号化してエスクロー

        Args:
            key: 画像鍵
            owner_address: オーナーアドレス
            image_context: 束縛先コンテキスト（オーナーと一致すること）

        Returns:
            EscrowedKey: ハンドルと証明（画像作成時に一緒に提出する）
        """
        owner_address = normalize_address(owner_address)
        if image_context.owner_address != owner_address:
            raise ValidationError("Image context is bound to a different owner", field="image_context")
        if image_context.contract_address != normalize_address(self.registry.contract_address):
            raise ValidationError("Image context is bound to a different contract", field="image_context")

        escrowed = await call_external(
            self.compute.encrypt_value(key.hex, image_context), SERVICE_NAME, self.timeout
        )
        log_business_event(logger, "key_escrowed", actor=owner_address,
                           content_hash=image_context.content_hash)
        return escrowed

    def prepare_authorization(
        self,
        public_key: bytes,
        start_timestamp: int | None = None,
        duration_days: int | None = None,
    ) -> StructuredAuthorization:
        """
        リクエスタが署名する構造化認可を用意

        Args:
            public_key: 鍵を封印して受け取るための一時 X25519 公開鍵
            start_timestamp: 有効期間の開始（省略時は現在時刻）
            duration_days: 有効日数（省略時は既定値）
        """
        return StructuredAuthorization(
            public_key="0x" + public_key.hex(),
            bound_contract_addresses=(self.registry.contract_address,),
            start_timestamp=int(self._clock()) if start_timestamp is None else start_timestamp,
            duration_days=duration_days or self.duration_days,
        )

    def _check_authorization(self, requester: str, signed: SignedAuthorization,
                             keypair: PrivateKey) -> None:
        authorization = signed.authorization
        signed.verify(requester)

        if normalize_address(self.registry.contract_address) not in authorization.bound_contract_addresses:
            raise AuthorizationError("Authorization is not bound to this registry contract")

        if authorization.public_key != "0x" + bytes(keypair.public_key).hex():
            raise AuthorizationError("Authorization public key does not match the decryption keypair")

        now = self._clock()
        if not authorization.is_active(now):
            raise AuthorizationError(
                "Authorization window is not active",
                details={
                    "start_timestamp": authorization.start_timestamp,
                    "end_timestamp": authorization.end_timestamp,
                },
            )

    async def release_for_decrypt(
        self,
        image_id: int,
        requester_address: str,
        signed_authorization: SignedAuthorization,
        keypair: PrivateKey,
    ) -> EncryptionKey:
        """
        認可されたリクエスタに画像鍵を解放

        同じハンドルからは常に同じ鍵が返る（再エスクローはしない）。

        Raises:
            AuthorizationError: 署名・有効期間・認可セットのいずれかの検証に失敗
            ExternalServiceError: Confidential Compute に到達できない
        """
        requester = normalize_address(requester_address)
        try:
            self._check_authorization(requester, signed_authorization, keypair)
        except ValidationError as e:
            raise AuthorizationError(f"Malformed authorization: {e.message}") from e

        if not await self.registry.is_authorized(image_id, requester):
            raise AuthorizationError(
                "Requester is not authorized for this image",
                details={"image_id": image_id, "requester": requester},
            )

        handle = await self.registry.get_encrypted_key_handle(image_id)
        try:
            results = await call_external(
                self.compute.user_decrypt(
                    [HandleContractPair(handle=handle, contract_address=self.registry.contract_address)],
                    signed_authorization,
                    requester,
                ),
                SERVICE_NAME,
                self.timeout,
            )
        except ValidationError as e:
            # 解放要求の拒否は認可の失敗として扱う
            raise AuthorizationError(
                f"Confidential compute rejected the release request: {e.message}",
                details={"image_id": image_id, "requester": requester},
            ) from e
        except NotFoundError as e:
            raise ExternalServiceError(
                "Confidential compute does not know the escrowed key handle",
                service_name=SERVICE_NAME,
                details={"image_id": image_id},
            ) from e

        sealed = results.get(handle)
        if sealed is None:
            raise ExternalServiceError(
                "Confidential compute did not return the requested handle",
                service_name=SERVICE_NAME,
            )

        try:
            key_hex = SealedBox(keypair).decrypt(sealed).decode("ascii")
            key = EncryptionKey.from_hex(key_hex)
        except (CryptoError, UnicodeDecodeError, ValidationError) as e:
            raise ExternalServiceError(
                "Confidential compute returned an unreadable key",
                service_name=SERVICE_NAME,
            ) from e

        log_business_event(logger, "key_released", actor=requester, image_id=image_id)
        return key

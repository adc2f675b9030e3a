"""
アクセスレジストリ
台帳上の追記専用な画像レコードと認可セット

取り消し（revoke）操作は存在しない。一度認可されたユーザーは
以降のすべての問い合わせで認可されたままになる。
"""

from ...core.exceptions import ExternalServiceError, ValidationError
from ...core.external import DEFAULT_TIMEOUT, call_external
from ...core.logging import get_logger, log_business_event
from ..models.authorization import normalize_address
from ..models.image import ImageInfo
from ..ports.ledger_port import ILedger, ImageUploaded

logger = get_logger(__name__)

SERVICE_NAME = "ledger"


class AccessRegistry:
    """
    アクセスレジストリ

    台帳ポートをラップし、全ての呼び出しにタイムアウトを設定する。
    書き込みの直列化は台帳のトランザクション順序に任せる。
    """

    def __init__(self, ledger: ILedger, timeout: float = DEFAULT_TIMEOUT):
        self.ledger = ledger
        self.timeout = timeout

    @property
    def contract_address(self) -> str:
        return self.ledger.contract_address

    @staticmethod
    def _validate_image_id(image_id: int) -> int:
        if isinstance(image_id, bool) or not isinstance(image_id, int):
            raise ValidationError("image_id must be an integer", field="image_id", value=image_id)
        return image_id

    async def create_image(self, content_hash: str, handle: str, proof: bytes, *, caller: str) -> int:
        """
        画像レコードを作成

        Args:
            content_hash: 暗号化Blobの content_hash
            handle: KeyEscrow が返した暗号化鍵ハンドル
            proof: ハンドルの整形式証明
            caller: 呼び出し元（オーナーとして記録される）

        Returns:
            int: 新しい imageId

        Raises:
            ValidationError: 証明がハンドルに対して検証できない、またはハンドルが使用済み
        """
        if not content_hash:
            raise ValidationError("content_hash is required", field="content_hash")
        caller = normalize_address(caller)

        receipt = await call_external(
            self.ledger.upload_image(handle, proof, content_hash, sender=caller),
            SERVICE_NAME,
            self.timeout,
        )

        event = receipt.find_event(ImageUploaded.name)
        if event is None:
            raise ExternalServiceError(
                "uploadImage receipt has no ImageUploaded event",
                service_name=SERVICE_NAME,
                details={"tx_hash": receipt.tx_hash},
            )

        log_business_event(logger, "image_created", actor=caller,
                           image_id=event.image_id, tx_hash=receipt.tx_hash)
        return event.image_id

    async def get_image_info(self, image_id: int) -> ImageInfo:
        """
        画像情報を取得

        Raises:
            NotFoundError: 未知の imageId
        """
        self._validate_image_id(image_id)
        return await call_external(self.ledger.get_image_info(image_id), SERVICE_NAME, self.timeout)

    async def get_encrypted_key_handle(self, image_id: int) -> str:
        """暗号化鍵ハンドルを取得（ハンドルの解読は KeyEscrow 経由のみ）"""
        self._validate_image_id(image_id)
        return await call_external(
            self.ledger.get_encrypted_password(image_id), SERVICE_NAME, self.timeout
        )

    async def authorize_user(self, image_id: int, user: str, *, caller: str) -> None:
        """
        ユーザーを認可（冪等）

        Raises:
            AuthorizationError: caller がオーナーでない
            NotFoundError: 未知の imageId
        """
        self._validate_image_id(image_id)
        user = normalize_address(user)
        caller = normalize_address(caller)

        receipt = await call_external(
            self.ledger.authorize_user(image_id, user, sender=caller), SERVICE_NAME, self.timeout
        )
        log_business_event(logger, "user_authorized", actor=caller,
                           image_id=image_id, grantee=user, tx_hash=receipt.tx_hash)

    async def is_authorized(self, image_id: int, user: str) -> bool:
        """認可されているか（オーナーは常に True）"""
        self._validate_image_id(image_id)
        return await call_external(
            self.ledger.is_authorized(image_id, normalize_address(user)), SERVICE_NAME, self.timeout
        )

    async def get_user_images(self, owner: str) -> list[int]:
        """オーナーの画像ID一覧（作成順、なければ空）"""
        return await call_external(
            self.ledger.get_user_images(normalize_address(owner)), SERVICE_NAME, self.timeout
        )

    async def get_total_images(self) -> int:
        """全画像数（単調非減少）"""
        return await call_external(self.ledger.get_total_images(), SERVICE_NAME, self.timeout)

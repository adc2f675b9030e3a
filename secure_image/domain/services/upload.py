"""
画像アップロードパイプライン

鍵生成 → 暗号化 → Blob保存 → 鍵エスクロー → 画像レコード作成
imageId は Blob と台帳の両方の書き込みが完了してから返す。
"""

from ...core.encryption import ImageCipher, validate_image
from ...core.exceptions import DecodeError, ValidationError
from ...core.external import DEFAULT_TIMEOUT, call_external
from ...core.key_management import KeyManager
from ...core.logging import get_logger, log_business_event
from ..models.authorization import normalize_address
from ..models.image import ImageContext, UploadResult
from ..ports.blob_store_port import IBlobStore
from .access_registry import AccessRegistry
from .key_escrow import KeyEscrow

logger = get_logger(__name__)


class ImageUploadService:
    """画像アップロードサービス"""

    def __init__(
        self,
        registry: AccessRegistry,
        blob_store: IBlobStore,
        escrow: KeyEscrow,
        key_manager: KeyManager | None = None,
        cipher: ImageCipher | None = None,
        timeout: float = DEFAULT_TIMEOUT,
    ):
        self.registry = registry
        self.blob_store = blob_store
        self.escrow = escrow
        self.key_manager = key_manager or KeyManager()
        self.cipher = cipher or ImageCipher()
        self.timeout = timeout

    async def upload(self, image_bytes: bytes, owner: str) -> UploadResult:
        """
        画像を暗号化して登録

        Args:
            image_bytes: 平文の画像
            owner: オーナーアドレス

        Returns:
            UploadResult: imageId・content_hash・オーナー（画像鍵はエスクロー後に破棄）

        Raises:
            ValidationError: 画像として不正、または証明が検証できない
            ExternalServiceError: 外部サービスに到達できない
        """
        owner = normalize_address(owner)
        try:
            image_format = validate_image(image_bytes)
        except DecodeError as e:
            raise ValidationError(e.message, field="image") from e

        key = self.key_manager.generate_key()
        blob = self.cipher.seal(image_bytes, key)

        content_hash = await call_external(
            self.blob_store.put(blob.to_bytes()), "blob_store", self.timeout
        )
        log_business_event(logger, "blob_stored", actor=owner,
                           content_hash=content_hash, format=image_format)

        context = ImageContext(
            contract_address=self.registry.contract_address,
            owner_address=owner,
            content_hash=content_hash,
        )
        escrowed = await self.escrow.escrow(key, owner, context)

        image_id = await self.registry.create_image(
            content_hash, escrowed.handle, escrowed.proof, caller=owner
        )
        log_business_event(logger, "image_uploaded", actor=owner,
                           image_id=image_id, content_hash=content_hash)

        return UploadResult(image_id=image_id, content_hash=content_hash, owner=owner)

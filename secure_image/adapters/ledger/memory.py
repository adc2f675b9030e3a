"""
インメモリ台帳
SecureImageManager コントラクトのネットワークなしの代替実装

- 書き込みはロックで直列化（トランザクション順序の代わり）
- 画像レコードは総数の更新と同じクリティカルセクションで可視になる
- 入力証明はインメモリ Confidential Compute の検証鍵で確認する
"""

import asyncio
import hashlib
import time
from collections import defaultdict
from collections.abc import Callable
from datetime import datetime, timezone

from ..compute.memory import InMemoryConfidentialCompute
from ...core.exceptions import AuthorizationError, NotFoundError, ValidationError
from ...core.logging import get_logger
from ...domain.models.authorization import normalize_address
from ...domain.models.image import AuthorizationEntry, ImageContext, ImageInfo, ImageRecord
from ...domain.ports.ledger_port import ILedger, ImageUploaded, LedgerReceipt

logger = get_logger(__name__)

DEFAULT_CONTRACT_ADDRESS = "0x5fbdb2315678afecb367f032d93f642f64180aa3"


class InMemoryLedger(ILedger):
    """
    インメモリ台帳

    imageId は 1 から始まる連番。削除・取り消し操作は存在しない。
    """

    def __init__(
        self,
        compute: InMemoryConfidentialCompute,
        contract_address: str = DEFAULT_CONTRACT_ADDRESS,
        clock: Callable[[], float] = time.time,
    ):
        self.compute = compute
        self._contract_address = normalize_address(contract_address)
        self._clock = clock
        self._lock = asyncio.Lock()
        self._images: dict[int, ImageRecord] = {}
        self._authorizations: dict[int, dict[str, AuthorizationEntry]] = defaultdict(dict)
        self._user_images: dict[str, list[int]] = defaultdict(list)
        self._handle_images: dict[str, int] = {}
        self._tx_count = 0
        self.events: list[ImageUploaded] = []

    @property
    def contract_address(self) -> str:
        return self._contract_address

    def _now(self) -> datetime:
        return datetime.fromtimestamp(self._clock(), tz=timezone.utc)

    def _next_tx_hash(self) -> str:
        self._tx_count += 1
        return "0x" + hashlib.sha256(
            self._contract_address.encode() + self._tx_count.to_bytes(8, "big")
        ).hexdigest()

    def _record(self, image_id: int) -> ImageRecord:
        record = self._images.get(image_id)
        if record is None:
            raise NotFoundError(f"Image not found: {image_id}", details={"image_id": image_id})
        return record

    # ===== 書き込み =====

    async def upload_image(
        self, encrypted_key_handle: str, proof: bytes, content_hash: str, *, sender: str
    ) -> LedgerReceipt:
        sender = normalize_address(sender)
        context = ImageContext(
            contract_address=self._contract_address,
            owner_address=sender,
            content_hash=content_hash,
        )
        if not self.compute.verify_input_proof(encrypted_key_handle, proof, context):
            raise ValidationError("Input proof does not verify against the handle",
                                  field="proof")

        async with self._lock:
            bound = self._handle_images.get(encrypted_key_handle.lower())
            if bound is not None:
                raise ValidationError(
                    f"Key handle is already bound to image {bound}",
                    field="encrypted_key_handle",
                )
            image_id = len(self._images) + 1
            self._handle_images[encrypted_key_handle.lower()] = image_id
            self._images[image_id] = ImageRecord(
                image_id=image_id,
                owner=sender,
                content_hash=content_hash,
                encrypted_key_handle=encrypted_key_handle,
                created_at=self._now(),
            )
            self._user_images[sender].append(image_id)
            self.compute.allow(encrypted_key_handle, sender)

            event = ImageUploaded(image_id=image_id, hash=content_hash, uploader=sender)
            self.events.append(event)
            receipt = LedgerReceipt(tx_hash=self._next_tx_hash(), events=(event,))

        logger.debug(f"Image {image_id} recorded for {sender}")
        return receipt

    async def authorize_user(self, image_id: int, user: str, *, sender: str) -> LedgerReceipt:
        user = normalize_address(user)
        sender = normalize_address(sender)

        async with self._lock:
            record = self._record(image_id)
            if record.owner != sender:
                raise AuthorizationError(
                    "Only the image owner can authorize users",
                    details={"image_id": image_id, "sender": sender},
                )
            if user not in self._authorizations[image_id]:
                self._authorizations[image_id][user] = AuthorizationEntry(
                    image_id=image_id, grantee=user, granted_at=self._now()
                )
                self.compute.allow(record.encrypted_key_handle, user)
            receipt = LedgerReceipt(tx_hash=self._next_tx_hash())

        return receipt

    # ===== 読み取り =====

    async def get_image_info(self, image_id: int) -> ImageInfo:
        return self._record(image_id).info

    async def get_encrypted_password(self, image_id: int) -> str:
        return self._record(image_id).encrypted_key_handle

    async def is_authorized(self, image_id: int, user: str) -> bool:
        record = self._record(image_id)
        user = normalize_address(user)
        return user == record.owner or user in self._authorizations.get(image_id, {})

    async def get_user_images(self, owner: str) -> list[int]:
        return list(self._user_images.get(normalize_address(owner), []))

    async def get_total_images(self) -> int:
        return len(self._images)

    def authorizations(self, image_id: int) -> list[AuthorizationEntry]:
        """画像の認可エントリ一覧（付与順）"""
        return list(self._authorizations.get(image_id, {}).values())

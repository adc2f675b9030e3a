"""
復号オーケストレーター
(imageId, requester) ごとの明示的な復号ステートマシン

各ステップは自動リトライしない。失敗はセッションに記録され、
呼び出し元が修正した入力で失敗したステップを明示的に再実行する。
"""

import asyncio
from datetime import datetime, timezone
from typing import Any

from nacl.public import PrivateKey

from ...core.encryption import ImageCipher
from ...core.exceptions import InvalidStateError, SecureImageError
from ...core.external import DEFAULT_TIMEOUT, call_external
from ...core.identity import RequesterIdentity
from ...core.logging import get_logger, log_business_event, log_error
from ..models.authorization import SignedAuthorization, StructuredAuthorization, normalize_address
from ..models.decryption import (
    CANCELLABLE_STATES,
    DecryptionSnapshot,
    DecryptionState,
    StateTransition,
    can_transition,
)
from ..models.image import EncryptedBlob
from ..ports.blob_store_port import IBlobStore
from .access_registry import AccessRegistry
from .key_escrow import KeyEscrow

logger = get_logger(__name__)

_START = "start"
_RELEASE = "release"


class DecryptionSession:
    """
    1組の (imageId, requester) に対する復号ステートマシン

    状態は start / submit_signature / cancel の直接呼び出しでのみ進む。
    同じステップへの同時呼び出しは実行中の1つのタスクを共有する。
    """

    def __init__(
        self,
        image_id: int,
        requester: str,
        *,
        registry: AccessRegistry,
        blob_store: IBlobStore,
        escrow: KeyEscrow,
        cipher: ImageCipher,
        timeout: float = DEFAULT_TIMEOUT,
    ):
        self.image_id = image_id
        self.requester = normalize_address(requester)
        self.registry = registry
        self.blob_store = blob_store
        self.escrow = escrow
        self.cipher = cipher
        self.timeout = timeout

        self.state = DecryptionState.IDLE
        self.error: SecureImageError | None = None
        self.failed_step: DecryptionState | None = None
        self.history: list[StateTransition] = []
        self.authorization: StructuredAuthorization | None = None
        self.content_hash: str | None = None

        self._blob_bytes: bytes | None = None
        self._handle: str | None = None
        self._keypair: PrivateKey | None = None
        self._inflight: asyncio.Task | None = None
        self._inflight_kind: str | None = None
        self._cancel_requested = False

    # ===== 参照 =====

    @property
    def can_resubmit_signature(self) -> bool:
        """署名の再提出で再開できるか"""
        return self.state is DecryptionState.AWAITING_SIGNATURE or (
            self.state is DecryptionState.FAILED
            and self.failed_step is DecryptionState.RELEASING_KEY
        )

    def snapshot(self) -> DecryptionSnapshot:
        return DecryptionSnapshot(
            image_id=self.image_id,
            requester=self.requester,
            state=self.state,
            failed_step=self.failed_step,
            error_code=self.error.error_code if self.error else None,
            error_message=self.error.message if self.error else None,
            content_hash=self.content_hash,
            key_handle=self._handle,
            history=tuple(self.history),
        )

    # ===== 状態遷移 =====

    def _transition(self, to_state: DecryptionState, reason: str | None = None) -> None:
        if not can_transition(self.state, to_state):
            raise InvalidStateError(
                f"Transition {self.state.value} -> {to_state.value} is not allowed",
                state=self.state.value,
            )
        self.history.append(StateTransition(
            from_state=self.state,
            to_state=to_state,
            at=datetime.now(timezone.utc),
            reason=reason,
        ))
        logger.debug(
            f"Decryption session {self.image_id}/{self.requester}: "
            f"{self.state.value} -> {to_state.value}"
        )
        self.state = to_state

    def _fail(self, step: DecryptionState, error: SecureImageError) -> None:
        error.with_step(step.value)
        self.error = error
        self.failed_step = step
        self._transition(DecryptionState.FAILED, error.error_code)
        log_error(logger, error, {
            "business_event": "decryption_failed",
            "actor": self.requester,
            "image_id": self.image_id,
            "step": step.value,
        })

    def _clear_secrets(self) -> None:
        self._keypair = None
        self.authorization = None

    async def _run(self, kind: str, coro) -> Any:
        self._cancel_requested = False
        self._inflight = asyncio.ensure_future(coro)
        self._inflight_kind = kind
        return await self._await_inflight()

    async def _await_inflight(self) -> Any:
        task = self._inflight
        try:
            return await asyncio.shield(task)
        except asyncio.CancelledError:
            if self._cancel_requested and task.cancelled():
                raise InvalidStateError("Decryption session was cancelled",
                                        state=DecryptionState.CANCELLED.value)
            raise

    def _has_inflight(self, kind: str) -> bool:
        return (
            self._inflight is not None
            and not self._inflight.done()
            and self._inflight_kind == kind
        )

    # ===== 操作 =====

    async def start(self) -> StructuredAuthorization:
        """
        Blob取得と鍵ハンドル取得を行い、署名待ちに進む

        IDLE または FAILED から呼び出せる。FAILED からの再実行は取得からやり直す。

        Returns:
            StructuredAuthorization: リクエスタが署名するペイロード

        Raises:
            NotFoundError: 未知の imageId、または Blob が存在しない
            ExternalServiceError: 台帳・Blob Store に到達できない
        """
        if self._has_inflight(_START):
            return await self._await_inflight()
        if self.state is DecryptionState.AWAITING_SIGNATURE and self.authorization is not None:
            return self.authorization
        if self.state not in (DecryptionState.IDLE, DecryptionState.FAILED):
            raise InvalidStateError(f"Cannot start from state {self.state.value}",
                                    state=self.state.value)

        self.error = None
        self.failed_step = None
        self._blob_bytes = None
        self._handle = None
        self._clear_secrets()
        self._transition(DecryptionState.FETCHING_BLOB, "start")
        return await self._run(_START, self._fetch_and_prepare())

    async def _fetch_and_prepare(self) -> StructuredAuthorization:
        try:
            info = await self.registry.get_image_info(self.image_id)
            self.content_hash = info.content_hash
            self._blob_bytes = await call_external(
                self.blob_store.get(info.content_hash), "blob_store", self.timeout
            )
        except SecureImageError as e:
            self._fail(DecryptionState.FETCHING_BLOB, e)
            raise

        self._transition(DecryptionState.REQUESTING_KEY_HANDLE)
        try:
            self._handle = await self.registry.get_encrypted_key_handle(self.image_id)
            self._keypair = PrivateKey.generate()
            self.authorization = self.escrow.prepare_authorization(bytes(self._keypair.public_key))
        except SecureImageError as e:
            self._fail(DecryptionState.REQUESTING_KEY_HANDLE, e)
            raise

        self._transition(DecryptionState.AWAITING_SIGNATURE)
        return self.authorization

    def renew_authorization(self) -> StructuredAuthorization:
        """
        同じ一時鍵で有効期間を更新したペイロードを作り直す

        期限切れで RELEASING_KEY が失敗した場合の再署名用。
        """
        if not self.can_resubmit_signature or self._keypair is None:
            raise InvalidStateError(f"Cannot renew authorization in state {self.state.value}",
                                    state=self.state.value)
        self.authorization = self.escrow.prepare_authorization(bytes(self._keypair.public_key))
        return self.authorization

    async def submit_signature(self, signed: SignedAuthorization) -> bytes:
        """
        外部で署名された構造化認可を提出し、鍵解放と画像復号を行う

        AWAITING_SIGNATURE、または RELEASING_KEY で失敗した FAILED から呼び出せる。
        平文はセッションに保持しない。COMPLETE 後の再提出は InvalidStateError。

        Returns:
            bytes: 復号された画像

        Raises:
            AuthorizationError: 署名・有効期間・認可セットの検証に失敗
            ExternalServiceError: Confidential Compute に到達できない
            IntegrityError: 暗号文の改ざんを検知
            DecodeError: 平文が画像として不正
        """
        if self._has_inflight(_RELEASE):
            return await self._await_inflight()
        if not self.can_resubmit_signature:
            raise InvalidStateError(f"Cannot submit a signature in state {self.state.value}",
                                    state=self.state.value)

        self.error = None
        self.failed_step = None
        self._transition(DecryptionState.RELEASING_KEY, "signature_submitted")
        return await self._run(_RELEASE, self._release_and_decrypt(signed))

    async def _release_and_decrypt(self, signed: SignedAuthorization) -> bytes:
        try:
            key = await self.escrow.release_for_decrypt(
                self.image_id, self.requester, signed, self._keypair
            )
        except SecureImageError as e:
            self._fail(DecryptionState.RELEASING_KEY, e)
            raise

        self._transition(DecryptionState.DECRYPTING)
        try:
            blob = EncryptedBlob.from_bytes(self._blob_bytes, content_hash=self.content_hash)
            plaintext = self.cipher.open(blob, key)
        except SecureImageError as e:
            self._fail(DecryptionState.DECRYPTING, e)
            raise

        self._blob_bytes = None
        self._clear_secrets()
        # 平文は待機中の呼び出し元にだけ渡る
        self._inflight = None
        self._inflight_kind = None
        self._transition(DecryptionState.COMPLETE)
        log_business_event(logger, "image_decrypted", actor=self.requester, image_id=self.image_id)
        return plaintext

    async def cancel(self) -> None:
        """
        復号を取り消す

        読み取りのみの段階（取得中・署名待ち）でのみ可能。台帳とエスクローに副作用は残らない。
        """
        if self.state not in CANCELLABLE_STATES:
            raise InvalidStateError(f"Cannot cancel in state {self.state.value}",
                                    state=self.state.value)

        self._cancel_requested = True
        task = self._inflight
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

        self._blob_bytes = None
        self._handle = None
        self._clear_secrets()
        self._transition(DecryptionState.CANCELLED, "cancelled")
        log_business_event(logger, "decryption_cancelled", actor=self.requester, image_id=self.image_id)


class DecryptionOrchestrator:
    """
    復号オーケストレーター

    (imageId, requester) ごとに実行中のステートマシンは高々1つ。
    重複リクエストは実行中のセッションにまとめられ、Confidential Compute への
    余分な解放要求は発生しない。完了・取り消し済みのセッションは保持しない。
    """

    def __init__(
        self,
        registry: AccessRegistry,
        blob_store: IBlobStore,
        escrow: KeyEscrow,
        cipher: ImageCipher | None = None,
        timeout: float = DEFAULT_TIMEOUT,
    ):
        self.registry = registry
        self.blob_store = blob_store
        self.escrow = escrow
        self.cipher = cipher or ImageCipher()
        self.timeout = timeout
        self._sessions: dict[tuple[int, str], DecryptionSession] = {}

    def session(self, image_id: int, requester: str) -> DecryptionSession:
        """
        セッションを取得（なければ作成）

        完了・取り消し済みのセッションは破棄し、新しいセッションに置き換える。
        """
        self._prune()
        key = (image_id, normalize_address(requester))
        existing = self._sessions.get(key)
        if existing is not None:
            return existing

        session = DecryptionSession(
            image_id,
            key[1],
            registry=self.registry,
            blob_store=self.blob_store,
            escrow=self.escrow,
            cipher=self.cipher,
            timeout=self.timeout,
        )
        self._sessions[key] = session
        return session

    def _prune(self) -> None:
        for key in [k for k, s in self._sessions.items() if s.state.is_terminal]:
            del self._sessions[key]

    def _discard(self, session: DecryptionSession) -> None:
        key = (session.image_id, session.requester)
        if self._sessions.get(key) is session:
            del self._sessions[key]

    def get_session(self, image_id: int, requester: str) -> DecryptionSession | None:
        return self._sessions.get((image_id, normalize_address(requester)))

    def snapshots(self) -> list[DecryptionSnapshot]:
        return [s.snapshot() for s in self._sessions.values()]

    async def decrypt(self, image_id: int, identity: RequesterIdentity) -> bytes:
        """
        start → 署名 → submit_signature を一続きで実行

        アイデンティティを手元に持つ呼び出し元（CLI 等）向け。
        完了したセッションは平文を返した時点で破棄する。
        """
        session = self.session(image_id, identity.address)

        if session.can_resubmit_signature and session.state is DecryptionState.FAILED:
            authorization = session.renew_authorization()
        elif session.state in (DecryptionState.RELEASING_KEY, DecryptionState.DECRYPTING):
            authorization = session.authorization
        else:
            authorization = await session.start()

        plaintext = await session.submit_signature(identity.sign(authorization))
        self._discard(session)
        return plaintext

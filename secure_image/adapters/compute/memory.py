"""
インメモリ Confidential Compute
FHE コプロセッサのネットワークなしの決定的な代替実装

- 値はコプロセッサの内部鍵で暗号化して保持する（平文では持たない）
- ハンドルはカウンタとコンテキストから決定的に導出する
- 入力証明はコプロセッサの Ed25519 鍵による署名
- ACL は台帳からの allow() 呼び出しで付与される
"""

import hashlib
import time
from collections import defaultdict
from collections.abc import Callable

import nacl.encoding
import nacl.hash
import nacl.secret
from nacl.exceptions import BadSignatureError
from nacl.public import PublicKey, SealedBox
from nacl.signing import SigningKey, VerifyKey

from ...core.exceptions import AuthorizationError, ValidationError
from ...core.logging import get_logger
from ...domain.models.authorization import SignedAuthorization, is_hex_string, normalize_address
from ...domain.models.image import EncryptionKey, ImageContext
from ...domain.ports.confidential_compute_port import (
    EscrowedKey,
    HandleContractPair,
    IConfidentialCompute,
)

logger = get_logger(__name__)

DEFAULT_SEED = bytes(32)


class InMemoryConfidentialCompute(IConfidentialCompute):
    """
    インメモリ Confidential Compute

    seed が同じなら同じ順序の呼び出しに対して同じハンドル・証明を返す。
    """

    def __init__(self, seed: bytes = DEFAULT_SEED, clock: Callable[[], float] = time.time):
        if len(seed) != 32:
            raise ValidationError("coprocessor seed must be 32 bytes", field="seed")
        self._signing_key = SigningKey(seed)
        self._vault = nacl.secret.SecretBox(
            nacl.hash.blake2b(seed, digest_size=32, person=b"secimg-vault",
                              encoder=nacl.encoding.RawEncoder)
        )
        self._clock = clock
        self._counter = 0
        self._values: dict[str, bytes] = {}
        self._contexts: dict[str, ImageContext] = {}
        self._acl: dict[str, set[str]] = defaultdict(set)
        self.decrypt_calls = 0

    @property
    def verify_key(self) -> bytes:
        """入力証明の検証鍵（台帳が使う）"""
        return self._signing_key.verify_key.encode()

    # ===== 入力の暗号化と証明 =====

    @staticmethod
    def _proof_message(handle: str, context: ImageContext) -> bytes:
        return bytes.fromhex(handle[2:]) + context.digest()

    async def encrypt_value(self, value: str, context: ImageContext) -> EscrowedKey:
        if not is_hex_string(value, EncryptionKey.SIZE):
            raise ValidationError("value must be an eaddress (0x + 40 hex)", field="value")

        self._counter += 1
        handle = "0x" + hashlib.sha256(
            self._counter.to_bytes(8, "big") + context.digest()
        ).hexdigest()

        # 決定的なnonce（ハンドルから導出）で内部保管用に暗号化
        nonce = bytes.fromhex(handle[2:])[:nacl.secret.SecretBox.NONCE_SIZE]
        self._values[handle] = self._vault.encrypt(value.encode("ascii"), nonce)
        self._contexts[handle] = context
        # 暗号化した本人は常に復号可能（FHE.allow(msg.sender) 相当）
        self._acl[handle].add(context.owner_address)

        proof = self._signing_key.sign(self._proof_message(handle, context)).signature
        return EscrowedKey(handle=handle, proof=proof)

    def verify_input_proof(self, handle: str, proof: bytes, context: ImageContext) -> bool:
        """ハンドルと証明がコンテキストに対して正しいか"""
        if not is_hex_string(handle, 32):
            return False
        try:
            VerifyKey(self.verify_key).verify(self._proof_message(handle, context), proof)
        except (BadSignatureError, ValueError, TypeError):
            return False
        return handle in self._values and self._contexts[handle] == context

    # ===== ACL =====

    def allow(self, handle: str, address: str) -> None:
        """ハンドルの復号をアドレスに許可（台帳から呼ばれる）"""
        if handle not in self._values:
            raise ValidationError(f"Unknown handle: {handle}", field="handle")
        self._acl[handle].add(normalize_address(address))

    def is_allowed(self, handle: str, address: str) -> bool:
        return normalize_address(address) in self._acl.get(handle, set())

    # ===== ユーザー復号 =====

    async def user_decrypt(
        self,
        handles: list[HandleContractPair],
        signed_authorization: SignedAuthorization,
        user_address: str,
    ) -> dict[str, bytes]:
        self.decrypt_calls += 1
        user = normalize_address(user_address)
        authorization = signed_authorization.authorization

        signed_authorization.verify(user)
        if not authorization.is_active(self._clock()):
            raise AuthorizationError("Authorization window is not active")

        recipient = PublicKey(bytes.fromhex(authorization.public_key[2:]))
        results: dict[str, bytes] = {}
        for pair in handles:
            if normalize_address(pair.contract_address) not in authorization.bound_contract_addresses:
                raise AuthorizationError("Handle contract is not covered by the authorization")
            if pair.handle not in self._values:
                raise AuthorizationError(f"Unknown handle: {pair.handle}")
            if not self.is_allowed(pair.handle, user):
                raise AuthorizationError("User is not allowed to decrypt this handle",
                                         details={"user": user})

            value = self._vault.decrypt(self._values[pair.handle])
            results[pair.handle] = SealedBox(recipient).encrypt(value)

        logger.debug(f"User decrypt served {len(results)} handle(s)")
        return results

    async def health_check(self) -> bool:
        return True

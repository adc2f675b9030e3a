"""
認可モデル
構造化認可（署名付き・スコープ付き・期限付き）とアドレスの扱い
"""

import json
from dataclasses import dataclass, field
from typing import Any

import nacl.encoding
import nacl.hash
from nacl.exceptions import BadSignatureError
from nacl.signing import VerifyKey

from ...core.exceptions import AuthorizationError, ValidationError

ADDRESS_SIZE = 20
SECONDS_PER_DAY = 86400
DEFAULT_DURATION_DAYS = 10
MAX_DURATION_DAYS = 365

_HEX_DIGITS = frozenset("0123456789abcdefABCDEF")


def is_hex_string(value: Any, size: int) -> bool:
    """0x + (size*2)桁hex かどうか"""
    if not isinstance(value, str) or not value.startswith("0x"):
        return False
    body = value[2:]
    return len(body) == size * 2 and all(c in _HEX_DIGITS for c in body)


def normalize_address(address: str) -> str:
    """アドレスを小文字に正規化（形式不正は ValidationError）"""
    if not is_hex_string(address, ADDRESS_SIZE):
        raise ValidationError("Address must be 0x + 40 hex characters", field="address", value=address)
    return address.lower()


def address_from_verify_key(verify_key: bytes) -> str:
    """Ed25519 検証鍵からアドレスを導出"""
    digest = nacl.hash.blake2b(
        verify_key,
        digest_size=ADDRESS_SIZE,
        person=b"secimg-address",
        encoder=nacl.encoding.RawEncoder,
    )
    return "0x" + digest.hex()


@dataclass(frozen=True)
class StructuredAuthorization:
    """
    構造化認可ペイロード

    リクエスタが署名する、特定の復号操作を許可する期限付きの宣言。
    public_key は鍵を封印して返してもらうための一時 X25519 公開鍵。
    """

    public_key: str
    bound_contract_addresses: tuple[str, ...]
    start_timestamp: int
    duration_days: int = DEFAULT_DURATION_DAYS

    def __post_init__(self):
        object.__setattr__(
            self,
            "bound_contract_addresses",
            tuple(normalize_address(a) for a in self.bound_contract_addresses),
        )
        if not is_hex_string(self.public_key, 32):
            raise ValidationError("public_key must be 0x + 64 hex characters", field="public_key")
        if not 1 <= self.duration_days <= MAX_DURATION_DAYS:
            raise ValidationError(
                f"duration_days must be between 1 and {MAX_DURATION_DAYS}",
                field="duration_days",
                value=self.duration_days,
            )
        if self.start_timestamp < 0:
            raise ValidationError("start_timestamp must be non-negative", field="start_timestamp")

    @property
    def end_timestamp(self) -> int:
        return self.start_timestamp + self.duration_days * SECONDS_PER_DAY

    def is_active(self, now: float) -> bool:
        """now が [start, start + duration] に含まれるか"""
        return self.start_timestamp <= now <= self.end_timestamp

    def to_dict(self) -> dict[str, Any]:
        return {
            "public_key": self.public_key,
            "bound_contract_addresses": list(self.bound_contract_addresses),
            "start_timestamp": self.start_timestamp,
            "duration_days": self.duration_days,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "StructuredAuthorization":
        return cls(
            public_key=data["public_key"],
            bound_contract_addresses=tuple(data["bound_contract_addresses"]),
            start_timestamp=int(data["start_timestamp"]),
            duration_days=int(data["duration_days"]),
        )

    def canonical_bytes(self) -> bytes:
        """署名対象のバイト列（キー順固定のコンパクトJSON）"""
        return json.dumps(self.to_dict(), sort_keys=True, separators=(",", ":")).encode("utf-8")


@dataclass(frozen=True)
class SignedAuthorization:
    """署名済み構造化認可"""

    authorization: StructuredAuthorization
    signature: bytes = field(repr=False)
    verify_key: bytes

    @property
    def signer_address(self) -> str:
        return address_from_verify_key(self.verify_key)

    def verify(self, expected_address: str) -> None:
        """
        署名と署名者アドレスを検証

        Raises:
            AuthorizationError: 署名不正、または署名者がリクエスタと一致しない
        """
        try:
            VerifyKey(self.verify_key).verify(self.authorization.canonical_bytes(), self.signature)
        except (BadSignatureError, ValueError, TypeError) as e:
            raise AuthorizationError("Invalid authorization signature") from e

        if self.signer_address != normalize_address(expected_address):
            raise AuthorizationError(
                "Authorization was not signed by the requester",
                details={"requester": expected_address},
            )

    def to_dict(self) -> dict[str, Any]:
        return {
            "authorization": self.authorization.to_dict(),
            "signature": "0x" + self.signature.hex(),
            "verify_key": "0x" + self.verify_key.hex(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SignedAuthorization":
        try:
            return cls(
                authorization=StructuredAuthorization.from_dict(data["authorization"]),
                signature=bytes.fromhex(data["signature"].removeprefix("0x")),
                verify_key=bytes.fromhex(data["verify_key"].removeprefix("0x")),
            )
        except (KeyError, ValueError, AttributeError) as e:
            raise ValidationError(f"Malformed signed authorization: {e}") from e

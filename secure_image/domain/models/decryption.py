"""
復号ステートマシンのモデル
状態・遷移記録・外部から参照するスナップショット
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any


class DecryptionState(Enum):
    """
    (imageId, requester) ごとの復号状態

    IDLE → FETCHING_BLOB → REQUESTING_KEY_HANDLE → AWAITING_SIGNATURE
         → RELEASING_KEY → DECRYPTING → COMPLETE
    失敗時は FAILED、明示的な取り消しは CANCELLED。
    """
    IDLE = "idle"
    FETCHING_BLOB = "fetching_blob"
    REQUESTING_KEY_HANDLE = "requesting_key_handle"
    AWAITING_SIGNATURE = "awaiting_signature"
    RELEASING_KEY = "releasing_key"
    DECRYPTING = "decrypting"
    COMPLETE = "complete"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (DecryptionState.COMPLETE, DecryptionState.CANCELLED)


# 許可された状態遷移。FAILED からは取得のやり直しか署名の再提出のみ
ALLOWED_TRANSITIONS: dict[DecryptionState, frozenset[DecryptionState]] = {
    DecryptionState.IDLE: frozenset([
        DecryptionState.FETCHING_BLOB,
        DecryptionState.CANCELLED,
    ]),
    DecryptionState.FETCHING_BLOB: frozenset([
        DecryptionState.REQUESTING_KEY_HANDLE,
        DecryptionState.FAILED,
        DecryptionState.CANCELLED,
    ]),
    DecryptionState.REQUESTING_KEY_HANDLE: frozenset([
        DecryptionState.AWAITING_SIGNATURE,
        DecryptionState.FAILED,
        DecryptionState.CANCELLED,
    ]),
    DecryptionState.AWAITING_SIGNATURE: frozenset([
        DecryptionState.RELEASING_KEY,
        DecryptionState.CANCELLED,
    ]),
    DecryptionState.RELEASING_KEY: frozenset([
        DecryptionState.DECRYPTING,
        DecryptionState.FAILED,
    ]),
    DecryptionState.DECRYPTING: frozenset([
        DecryptionState.COMPLETE,
        DecryptionState.FAILED,
    ]),
    DecryptionState.FAILED: frozenset([
        DecryptionState.FETCHING_BLOB,
        DecryptionState.RELEASING_KEY,
    ]),
    DecryptionState.COMPLETE: frozenset(),
    DecryptionState.CANCELLED: frozenset(),
}


def can_transition(from_state: DecryptionState, to_state: DecryptionState) -> bool:
    return to_state in ALLOWED_TRANSITIONS[from_state]


# 台帳・エスクローに副作用を残さずに取り消せる状態（読み取りのみの段階）
CANCELLABLE_STATES = frozenset([
    DecryptionState.IDLE,
    DecryptionState.FETCHING_BLOB,
    DecryptionState.REQUESTING_KEY_HANDLE,
    DecryptionState.AWAITING_SIGNATURE,
])


@dataclass(frozen=True)
class StateTransition:
    """状態遷移記録"""
    from_state: DecryptionState
    to_state: DecryptionState
    at: datetime
    reason: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "from_state": self.from_state.value,
            "to_state": self.to_state.value,
            "at": self.at.isoformat(),
            "reason": self.reason,
        }


@dataclass(frozen=True)
class DecryptionSnapshot:
    """セッションの現在状態（平文・鍵は含めない）"""
    image_id: int
    requester: str
    state: DecryptionState
    failed_step: DecryptionState | None
    error_code: str | None
    error_message: str | None
    content_hash: str | None
    key_handle: str | None
    history: tuple[StateTransition, ...]

    def to_dict(self) -> dict[str, Any]:
        return {
            "image_id": self.image_id,
            "requester": self.requester,
            "state": self.state.value,
            "failed_step": self.failed_step.value if self.failed_step else None,
            "error_code": self.error_code,
            "error_message": self.error_message,
            "content_hash": self.content_hash,
            "key_handle": self.key_handle,
            "history": [t.to_dict() for t in self.history],
        }

"""
カスタム例外クラス
階層的な例外処理によるエラーハンドリングの統一

呼び出し元はエラー種別と発生ステップで分岐できる。
自動リトライしてよいのは ExternalServiceError のみ。
"""

from typing import Any


class SecureImageError(Exception):
    """secure_image のベース例外クラス"""

    retryable = False

    def __init__(self, message: str, error_code: str | None = None,
                 details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.error_code = error_code or self.__class__.__name__
        self.details = details or {}

    @property
    def step(self) -> str | None:
        """エラーが発生したステップ（復号ステートマシン由来の場合）"""
        return self.details.get("step")

    def with_step(self, step: str) -> "SecureImageError":
        """発生ステップを記録して自身を返す"""
        self.details.setdefault("step", step)
        return self


class ConfigurationError(SecureImageError):
    """設定関連のエラー"""


class ValidationError(SecureImageError):
    """バリデーションエラー（鍵・証明・フォーマット不正）"""

    def __init__(self, message: str, field: str | None = None,
                 value: Any | None = None, **kwargs):
        super().__init__(message, **kwargs)
        if field:
            self.details['field'] = field
        if value is not None:
            self.details['value'] = value


class NotFoundError(SecureImageError):
    """未知の imageId、または Blob が存在しない"""


class AuthorizationError(SecureImageError):
    """署名不正・期限切れ・認可セット外のリクエスタ"""


class IntegrityError(SecureImageError):
    """暗号文の認証タグ検証失敗（改ざん検知）"""


class DecodeError(SecureImageError):
    """認証は通ったが平文が画像コンテナとして不正"""


class KeyGenerationError(SecureImageError):
    """エントロピー源が利用できない（致命的、リトライしない）"""


class InvalidStateError(SecureImageError):
    """ステートマシンで許可されていない操作"""

    def __init__(self, message: str, state: str | None = None, **kwargs):
        super().__init__(message, **kwargs)
        if state:
            self.details['state'] = state


class ExternalServiceError(SecureImageError):
    """外部サービス（Blob Store / Ledger / Confidential Compute）関連のエラー"""

    retryable = True

    def __init__(self, message: str, service_name: str = "unknown",
                 status_code: int | None = None, **kwargs):
        super().__init__(message, **kwargs)
        self.details['service_name'] = service_name
        if status_code:
            self.details['status_code'] = status_code

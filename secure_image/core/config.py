"""
統合設定管理

pydantic-settings を使用した型安全な設定管理
- 環境変数から自動読み込み
- バリデーション付き
- デフォルト値対応
"""

from functools import lru_cache
from typing import Literal, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class LedgerSettings(BaseSettings):
    """台帳（SecureImageManager コントラクト）設定"""

    model_config = SettingsConfigDict(env_prefix="SECIMG_LEDGER_")

    backend: Literal["memory", "rpc"] = Field(default="rpc", description="台帳実装")
    url: str = Field(default="http://localhost:8545", description="JSON-RPC ゲートウェイ URL")
    contract_address: str = Field(
        default="0x0000000000000000000000000000000000000000",
        description="コントラクトアドレス",
    )

    @field_validator("contract_address")
    @classmethod
    def validate_contract_address(cls, v: str) -> str:
        """0x + 40桁hex の形式チェック"""
        body = v[2:] if v.startswith("0x") else ""
        if len(body) != 40 or any(c not in "0123456789abcdefABCDEF" for c in body):
            raise ValueError(f"invalid contract address: {v}")
        return v.lower()


class ComputeSettings(BaseSettings):
    """Confidential Compute（FHE リレイヤー）設定"""

    model_config = SettingsConfigDict(env_prefix="SECIMG_COMPUTE_")

    backend: Literal["memory", "relayer"] = Field(default="relayer", description="Confidential Compute 実装")
    relayer_url: str = Field(default="http://localhost:8080", description="リレイヤー URL")
    coprocessor_seed: Optional[str] = Field(
        default=None,
        description="インメモリ実装用のコプロセッサ鍵シード (hex, 32バイト)",
    )


class BlobSettings(BaseSettings):
    """Blob Store 設定"""

    model_config = SettingsConfigDict(env_prefix="SECIMG_BLOB_")

    backend: Literal["memory", "file", "ipfs"] = Field(default="file", description="Blob Store 実装")
    ipfs_api_url: str = Field(default="http://127.0.0.1:5001", description="IPFS HTTP API URL")
    blob_dir: str = Field(default="data/blobs", description="ファイル Blob Store の保存先")


class SecureImageSettings(BaseSettings):
    """secure_image 全体設定"""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    data_dir: str = Field(default="data", alias="SECIMG_DATA_DIR", description="データ保存ディレクトリ")
    log_level: str = Field(default="INFO", alias="SECIMG_LOG_LEVEL", description="ログレベル")
    identity_file: str = Field(
        default=".secimg_identity",
        alias="SECIMG_IDENTITY_FILE",
        description="署名用アイデンティティ鍵ファイル",
    )

    # 外部サービス呼び出しのタイムアウト（認可ウィンドウとは別）
    external_timeout: float = Field(default=30.0, alias="SECIMG_EXTERNAL_TIMEOUT", gt=0)
    authorization_duration_days: int = Field(
        default=10, alias="SECIMG_AUTHORIZATION_DURATION_DAYS", ge=1, le=365,
    )

    ledger: LedgerSettings = Field(default_factory=LedgerSettings)
    compute: ComputeSettings = Field(default_factory=ComputeSettings)
    blob: BlobSettings = Field(default_factory=BlobSettings)

    @classmethod
    def load(cls) -> "SecureImageSettings":
        """設定をロード（サブ設定も含む）"""
        return cls(
            ledger=LedgerSettings(),
            compute=ComputeSettings(),
            blob=BlobSettings(),
        )


@lru_cache()
def get_settings() -> SecureImageSettings:
    """
    設定を取得（キャッシュ付き）

    使用例:
        settings = get_settings()
        print(settings.ledger.contract_address)
    """
    return SecureImageSettings.load()


def reload_settings() -> SecureImageSettings:
    """設定を再読み込み"""
    get_settings.cache_clear()
    return get_settings()

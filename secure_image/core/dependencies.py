"""
依存性注入コンテナ
設定からアダプターとドメインサービスを組み立てる
"""

import time
from collections.abc import Callable
from typing import Any, Dict, Optional

from ..adapters.blob.file import FileBlobStore
from ..adapters.blob.ipfs import IPFSBlobStore
from ..adapters.blob.memory import InMemoryBlobStore
from ..adapters.compute.memory import DEFAULT_SEED, InMemoryConfidentialCompute
from ..adapters.compute.relayer import RelayerConfidentialCompute
from ..adapters.ledger.memory import InMemoryLedger
from ..adapters.ledger.rpc import JsonRpcLedger
from ..domain.ports import IBlobStore, IConfidentialCompute, ILedger
from ..domain.services import (
    AccessRegistry,
    DecryptionOrchestrator,
    ImageUploadService,
    KeyEscrow,
)
from .config import SecureImageSettings, get_settings
from .exceptions import ConfigurationError


class DependencyContainer:
    """
    依存性注入コンテナ

    ポートの実装は設定の backend で選ぶ。明示的に渡されたものが優先。
    """

    def __init__(
        self,
        settings: Optional[SecureImageSettings] = None,
        *,
        blob_store: Optional[IBlobStore] = None,
        compute: Optional[IConfidentialCompute] = None,
        ledger: Optional[ILedger] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.settings = settings or get_settings()
        self.clock = clock
        self._instances: Dict[str, Any] = {}
        if blob_store is not None:
            self._instances['blob_store'] = blob_store
        if compute is not None:
            self._instances['compute'] = compute
        if ledger is not None:
            self._instances['ledger'] = ledger

    @classmethod
    def in_memory(
        cls,
        settings: Optional[SecureImageSettings] = None,
        seed: bytes = DEFAULT_SEED,
        clock: Callable[[], float] = time.time,
    ) -> "DependencyContainer":
        """全ポートをインメモリ実装で構成（デモ・テスト用）"""
        settings = settings or get_settings()
        compute = InMemoryConfidentialCompute(seed=seed, clock=clock)
        return cls(
            settings,
            blob_store=InMemoryBlobStore(),
            compute=compute,
            ledger=InMemoryLedger(compute, settings.ledger.contract_address, clock=clock),
            clock=clock,
        )

    @property
    def timeout(self) -> float:
        return self.settings.external_timeout

    # ===== ポート =====

    def get_blob_store(self) -> IBlobStore:
        """Blob Store を取得"""
        if 'blob_store' not in self._instances:
            blob = self.settings.blob
            if blob.backend == "memory":
                store: IBlobStore = InMemoryBlobStore()
            elif blob.backend == "ipfs":
                store = IPFSBlobStore(blob.ipfs_api_url, timeout=self.timeout)
            else:
                store = FileBlobStore(blob.blob_dir)
            self._instances['blob_store'] = store
        return self._instances['blob_store']

    def get_compute(self) -> IConfidentialCompute:
        """Confidential Compute クライアントを取得"""
        if 'compute' not in self._instances:
            compute_settings = self.settings.compute
            if compute_settings.backend == "memory":
                seed = DEFAULT_SEED
                if compute_settings.coprocessor_seed:
                    try:
                        seed = bytes.fromhex(compute_settings.coprocessor_seed.removeprefix("0x"))
                    except ValueError as e:
                        raise ConfigurationError("SECIMG_COMPUTE_COPROCESSOR_SEED must be hex") from e
                self._instances['compute'] = InMemoryConfidentialCompute(seed=seed, clock=self.clock)
            else:
                self._instances['compute'] = RelayerConfidentialCompute(
                    compute_settings.relayer_url, timeout=self.timeout
                )
        return self._instances['compute']

    def get_ledger(self) -> ILedger:
        """台帳を取得"""
        if 'ledger' not in self._instances:
            ledger_settings = self.settings.ledger
            if ledger_settings.backend == "memory":
                compute = self.get_compute()
                if not isinstance(compute, InMemoryConfidentialCompute):
                    raise ConfigurationError(
                        "The in-memory ledger requires the in-memory confidential compute backend"
                    )
                self._instances['ledger'] = InMemoryLedger(
                    compute, ledger_settings.contract_address, clock=self.clock
                )
            else:
                self._instances['ledger'] = JsonRpcLedger(
                    ledger_settings.url, ledger_settings.contract_address, timeout=self.timeout
                )
        return self._instances['ledger']

    # ===== サービス =====

    def get_registry(self) -> AccessRegistry:
        if 'registry' not in self._instances:
            self._instances['registry'] = AccessRegistry(self.get_ledger(), timeout=self.timeout)
        return self._instances['registry']

    def get_escrow(self) -> KeyEscrow:
        if 'escrow' not in self._instances:
            self._instances['escrow'] = KeyEscrow(
                self.get_compute(),
                self.get_registry(),
                timeout=self.timeout,
                duration_days=self.settings.authorization_duration_days,
                clock=self.clock,
            )
        return self._instances['escrow']

    def get_orchestrator(self) -> DecryptionOrchestrator:
        if 'orchestrator' not in self._instances:
            self._instances['orchestrator'] = DecryptionOrchestrator(
                self.get_registry(),
                self.get_blob_store(),
                self.get_escrow(),
                timeout=self.timeout,
            )
        return self._instances['orchestrator']

    def get_upload_service(self) -> ImageUploadService:
        if 'upload_service' not in self._instances:
            self._instances['upload_service'] = ImageUploadService(
                self.get_registry(),
                self.get_blob_store(),
                self.get_escrow(),
                timeout=self.timeout,
            )
        return self._instances['upload_service']


# グローバルコンテナインスタンス
_container: Optional[DependencyContainer] = None


def get_container() -> DependencyContainer:
    """グローバル依存性注入コンテナを取得"""
    global _container
    if _container is None:
        _container = DependencyContainer()
    return _container


def reset_container() -> None:
    """グローバルコンテナを破棄（設定変更後・テスト用）"""
    global _container
    _container = None

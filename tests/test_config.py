"""
設定と依存性注入コンテナのテスト
"""

import pytest
from pydantic import ValidationError as PydanticValidationError

from secure_image.adapters.blob.file import FileBlobStore
from secure_image.adapters.blob.ipfs import IPFSBlobStore
from secure_image.adapters.blob.memory import InMemoryBlobStore
from secure_image.adapters.compute.memory import InMemoryConfidentialCompute
from secure_image.adapters.compute.relayer import RelayerConfidentialCompute
from secure_image.adapters.ledger.memory import InMemoryLedger
from secure_image.adapters.ledger.rpc import JsonRpcLedger
from secure_image.core.config import LedgerSettings, SecureImageSettings, get_settings, reload_settings
from secure_image.core.dependencies import DependencyContainer
from secure_image.core.exceptions import ConfigurationError


@pytest.fixture(autouse=True)
def clean_env(monkeypatch, tmp_path):
    """環境変数と .env の影響を受けないようにする"""
    monkeypatch.chdir(tmp_path)
    for name in [
        "SECIMG_LOG_LEVEL", "SECIMG_EXTERNAL_TIMEOUT", "SECIMG_AUTHORIZATION_DURATION_DAYS",
        "SECIMG_LEDGER_BACKEND", "SECIMG_LEDGER_URL", "SECIMG_LEDGER_CONTRACT_ADDRESS",
        "SECIMG_COMPUTE_BACKEND", "SECIMG_COMPUTE_COPROCESSOR_SEED",
        "SECIMG_BLOB_BACKEND", "SECIMG_BLOB_BLOB_DIR",
    ]:
        monkeypatch.delenv(name, raising=False)
    yield
    get_settings.cache_clear()


class TestSettings:
    """SecureImageSettings のテスト"""

    def test_defaults(self):
        settings = SecureImageSettings.load()

        assert settings.external_timeout == 30.0
        assert settings.authorization_duration_days == 10
        assert settings.ledger.backend == "rpc"
        assert settings.compute.backend == "relayer"
        assert settings.blob.backend == "file"

    def test_environment_overrides(self, monkeypatch):
        monkeypatch.setenv("SECIMG_EXTERNAL_TIMEOUT", "2.5")
        monkeypatch.setenv("SECIMG_AUTHORIZATION_DURATION_DAYS", "3")
        monkeypatch.setenv("SECIMG_LEDGER_CONTRACT_ADDRESS", "0x" + "AB" * 20)
        monkeypatch.setenv("SECIMG_BLOB_BACKEND", "ipfs")

        settings = reload_settings()

        assert settings.external_timeout == 2.5
        assert settings.authorization_duration_days == 3
        assert settings.ledger.contract_address == "0x" + "ab" * 20
        assert settings.blob.backend == "ipfs"

    def test_get_settings_is_cached(self):
        assert get_settings() is get_settings()

    def test_invalid_contract_address(self, monkeypatch):
        monkeypatch.setenv("SECIMG_LEDGER_CONTRACT_ADDRESS", "0x1234")

        with pytest.raises(PydanticValidationError):
            LedgerSettings()

    def test_duration_bounds(self, monkeypatch):
        monkeypatch.setenv("SECIMG_AUTHORIZATION_DURATION_DAYS", "0")

        with pytest.raises(PydanticValidationError):
            SecureImageSettings.load()


class TestDependencyContainer:
    """DependencyContainer のテスト"""

    def test_network_backends_by_default(self):
        container = DependencyContainer(SecureImageSettings.load())

        assert isinstance(container.get_ledger(), JsonRpcLedger)
        assert isinstance(container.get_compute(), RelayerConfidentialCompute)
        assert isinstance(container.get_blob_store(), FileBlobStore)

    def test_memory_backends(self, monkeypatch):
        monkeypatch.setenv("SECIMG_LEDGER_BACKEND", "memory")
        monkeypatch.setenv("SECIMG_COMPUTE_BACKEND", "memory")
        monkeypatch.setenv("SECIMG_COMPUTE_COPROCESSOR_SEED", "0x" + "07" * 32)
        monkeypatch.setenv("SECIMG_BLOB_BACKEND", "memory")

        container = DependencyContainer(SecureImageSettings.load())

        assert isinstance(container.get_ledger(), InMemoryLedger)
        assert isinstance(container.get_compute(), InMemoryConfidentialCompute)
        assert isinstance(container.get_blob_store(), InMemoryBlobStore)
        assert container.get_ledger().compute is container.get_compute()

    def test_ipfs_backend(self, monkeypatch):
        monkeypatch.setenv("SECIMG_BLOB_BACKEND", "ipfs")

        assert isinstance(DependencyContainer(SecureImageSettings.load()).get_blob_store(), IPFSBlobStore)

    def test_sub_second_timeout_reaches_adapters(self, monkeypatch):
        monkeypatch.setenv("SECIMG_EXTERNAL_TIMEOUT", "0.5")
        monkeypatch.setenv("SECIMG_BLOB_BACKEND", "ipfs")

        container = DependencyContainer(SecureImageSettings.load())

        assert container.get_blob_store().timeout == 0.5
        assert container.get_compute().timeout == 0.5
        assert container.get_ledger().timeout == 0.5
        assert container.get_registry().timeout == 0.5

    def test_memory_ledger_requires_memory_compute(self, monkeypatch):
        monkeypatch.setenv("SECIMG_LEDGER_BACKEND", "memory")

        with pytest.raises(ConfigurationError):
            DependencyContainer(SecureImageSettings.load()).get_ledger()

    def test_malformed_coprocessor_seed(self, monkeypatch):
        monkeypatch.setenv("SECIMG_COMPUTE_BACKEND", "memory")
        monkeypatch.setenv("SECIMG_COMPUTE_COPROCESSOR_SEED", "not-hex")

        with pytest.raises(ConfigurationError):
            DependencyContainer(SecureImageSettings.load()).get_compute()

    def test_services_are_shared(self):
        container = DependencyContainer.in_memory(SecureImageSettings.load())

        assert container.get_registry() is container.get_registry()
        assert container.get_orchestrator().escrow is container.get_escrow()
        assert container.get_upload_service().blob_store is container.get_blob_store()
        assert container.get_escrow().duration_days == 10

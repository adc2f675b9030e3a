"""
テスト共通フィクスチャ
インメモリ実装だけで組み立てた環境
"""

import pytest

from secure_image.adapters.blob.memory import InMemoryBlobStore
from secure_image.adapters.compute.memory import InMemoryConfidentialCompute
from secure_image.adapters.ledger.memory import InMemoryLedger
from secure_image.core.encryption import ImageCipher
from secure_image.core.identity import RequesterIdentity
from secure_image.domain.services import (
    AccessRegistry,
    DecryptionOrchestrator,
    ImageUploadService,
    KeyEscrow,
)

from helpers import CONTRACT_ADDRESS, FakeClock, RecordingKeyManager, make_png


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def compute(clock):
    return InMemoryConfidentialCompute(seed=bytes(32), clock=clock)


@pytest.fixture
def ledger(compute, clock):
    return InMemoryLedger(compute, CONTRACT_ADDRESS, clock=clock)


@pytest.fixture
def blob_store():
    return InMemoryBlobStore()


@pytest.fixture
def registry(ledger):
    return AccessRegistry(ledger, timeout=5.0)


@pytest.fixture
def escrow(compute, registry, clock):
    return KeyEscrow(compute, registry, timeout=5.0, clock=clock)


@pytest.fixture
def cipher():
    return ImageCipher()


@pytest.fixture
def orchestrator(registry, blob_store, escrow, cipher):
    return DecryptionOrchestrator(registry, blob_store, escrow, cipher, timeout=5.0)


@pytest.fixture
def upload_service(registry, blob_store, escrow, cipher):
    return ImageUploadService(registry, blob_store, escrow, key_manager=RecordingKeyManager(),
                              cipher=cipher, timeout=5.0)


@pytest.fixture
def owner():
    return RequesterIdentity.from_seed(bytes([1]) * 32)


@pytest.fixture
def requester():
    return RequesterIdentity.from_seed(bytes([2]) * 32)


@pytest.fixture
def stranger():
    return RequesterIdentity.from_seed(bytes([3]) * 32)


@pytest.fixture
def png_bytes():
    return make_png()

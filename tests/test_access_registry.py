"""
アクセスレジストリ（インメモリ台帳）のテスト

- imageId は 1 から単調増加
- 認可は追記のみ（取り消しなし）
- オーナーのみが認可を付与できる
"""

import asyncio
from unittest.mock import AsyncMock, patch

import pytest

from secure_image.core.exceptions import (
    AuthorizationError,
    ExternalServiceError,
    NotFoundError,
    ValidationError,
)
from secure_image.core.key_management import KeyManager
from secure_image.domain.models.image import ImageContext
from secure_image.domain.ports.ledger_port import ImageUploaded, LedgerReceipt

from helpers import START_TIME, make_png


def _key():
    return KeyManager().generate_key()


class TestImageRecords:
    """画像レコードのテスト"""

    @pytest.mark.asyncio
    async def test_image_ids_start_at_one_and_increase(self, upload_service, registry, owner):
        # Given: 空の台帳
        assert await registry.get_total_images() == 0

        # When: 2枚アップロード
        first = await upload_service.upload(make_png((1, 2, 3)), owner.address)
        second = await upload_service.upload(make_png((4, 5, 6)), owner.address)

        # Then: 1, 2 が割り当てられる
        assert first.image_id == 1
        assert second.image_id == 2
        assert await registry.get_total_images() == 2
        assert await registry.get_user_images(owner.address) == [1, 2]

    @pytest.mark.asyncio
    async def test_get_image_info(self, upload_service, registry, owner, png_bytes):
        result = await upload_service.upload(png_bytes, owner.address)

        info = await registry.get_image_info(result.image_id)

        assert info.owner == owner.address
        assert info.content_hash == result.content_hash
        assert info.created_at.timestamp() == START_TIME

    @pytest.mark.asyncio
    async def test_encrypted_key_handle_is_opaque(self, upload_service, registry, owner, png_bytes):
        """ハンドルは 0x + 64桁hex で、鍵そのものではない"""
        result = await upload_service.upload(png_bytes, owner.address)

        handle = await registry.get_encrypted_key_handle(result.image_id)

        assert handle.startswith("0x") and len(handle) == 66
        assert upload_service.key_manager.keys[-1].hex[2:] not in handle

    @pytest.mark.asyncio
    async def test_unknown_image_raises_not_found(self, registry, owner):
        with pytest.raises(NotFoundError):
            await registry.get_image_info(42)
        with pytest.raises(NotFoundError):
            await registry.get_encrypted_key_handle(42)
        with pytest.raises(NotFoundError):
            await registry.is_authorized(42, owner.address)
        with pytest.raises(NotFoundError):
            await registry.authorize_user(42, owner.address, caller=owner.address)

    @pytest.mark.asyncio
    async def test_non_integer_image_id_is_rejected(self, registry):
        with pytest.raises(ValidationError):
            await registry.get_image_info("1")
        with pytest.raises(ValidationError):
            await registry.get_image_info(True)

    @pytest.mark.asyncio
    async def test_user_without_images_gets_empty_list(self, registry, stranger):
        assert await registry.get_user_images(stranger.address) == []

    @pytest.mark.asyncio
    async def test_malformed_address_is_rejected(self, registry):
        with pytest.raises(ValidationError):
            await registry.get_user_images("not-an-address")

    @pytest.mark.asyncio
    async def test_upload_emits_event(self, upload_service, ledger, owner, png_bytes):
        result = await upload_service.upload(png_bytes, owner.address)

        assert ledger.events == [
            ImageUploaded(image_id=result.image_id, hash=result.content_hash, uploader=owner.address)
        ]

    @pytest.mark.asyncio
    async def test_concurrent_uploads_get_unique_ids(self, upload_service, registry, owner):
        """並行アップロードでもIDは重複しない"""
        results = await asyncio.gather(*[
            upload_service.upload(make_png((i, i, i)), owner.address) for i in range(10)
        ])

        assert sorted(r.image_id for r in results) == list(range(1, 11))
        assert await registry.get_total_images() == 10


class TestInputProofs:
    """入力証明の検証テスト"""

    @pytest.mark.asyncio
    async def test_invalid_proof_is_rejected(self, escrow, registry, owner):
        context = ImageContext(registry.contract_address, owner.address, "hash-a")
        escrowed = await escrow.escrow(_key(), owner.address, context)

        with pytest.raises(ValidationError):
            await registry.create_image("hash-a", escrowed.handle, bytes(64), caller=owner.address)
        assert await registry.get_total_images() == 0

    @pytest.mark.asyncio
    async def test_proof_cannot_be_replayed_for_other_content(self, escrow, registry, owner):
        """別の content_hash への再利用は拒否される"""
        context = ImageContext(registry.contract_address, owner.address, "hash-a")
        escrowed = await escrow.escrow(_key(), owner.address, context)

        with pytest.raises(ValidationError):
            await registry.create_image("hash-b", escrowed.handle, escrowed.proof, caller=owner.address)

    @pytest.mark.asyncio
    async def test_proof_cannot_be_used_by_another_sender(self, escrow, registry, owner, stranger):
        context = ImageContext(registry.contract_address, owner.address, "hash-a")
        escrowed = await escrow.escrow(_key(), owner.address, context)

        with pytest.raises(ValidationError):
            await registry.create_image("hash-a", escrowed.handle, escrowed.proof, caller=stranger.address)

    @pytest.mark.asyncio
    async def test_handle_is_bound_to_one_record(self, escrow, registry, owner):
        """同じハンドルで2つ目のレコードは作れない"""
        context = ImageContext(registry.contract_address, owner.address, "a" * 64)
        escrowed = await escrow.escrow(_key(), owner.address, context)
        image_id = await registry.create_image("a" * 64, escrowed.handle, escrowed.proof, caller=owner.address)

        with pytest.raises(ValidationError) as exc_info:
            await registry.create_image("a" * 64, escrowed.handle, escrowed.proof, caller=owner.address)

        assert exc_info.value.details["field"] == "encrypted_key_handle"
        assert await registry.get_total_images() == 1
        assert await registry.get_user_images(owner.address) == [image_id]

    @pytest.mark.asyncio
    async def test_concurrent_reuse_of_handle(self, escrow, registry, owner):
        context = ImageContext(registry.contract_address, owner.address, "b" * 64)
        escrowed = await escrow.escrow(_key(), owner.address, context)

        results = await asyncio.gather(*[
            registry.create_image("b" * 64, escrowed.handle, escrowed.proof, caller=owner.address)
            for _ in range(3)
        ], return_exceptions=True)

        assert sum(isinstance(r, int) for r in results) == 1
        assert sum(isinstance(r, ValidationError) for r in results) == 2
        assert await registry.get_total_images() == 1

    @pytest.mark.asyncio
    async def test_receipt_without_event_is_an_error(self, registry, ledger, owner):
        with patch.object(ledger, "upload_image", AsyncMock(return_value=LedgerReceipt(tx_hash="0x01"))):
            with pytest.raises(ExternalServiceError):
                await registry.create_image("hash", "0x" + "ab" * 32, b"proof", caller=owner.address)


class TestAuthorization:
    """認可セットのテスト"""

    @pytest.mark.asyncio
    async def test_owner_is_implicitly_authorized(self, upload_service, registry, owner, png_bytes):
        result = await upload_service.upload(png_bytes, owner.address)
        assert await registry.is_authorized(result.image_id, owner.address)

    @pytest.mark.asyncio
    async def test_authorize_user(self, upload_service, registry, owner, requester, png_bytes):
        # Given: 未認可のリクエスタ
        result = await upload_service.upload(png_bytes, owner.address)
        assert not await registry.is_authorized(result.image_id, requester.address)

        # When: オーナーが認可
        await registry.authorize_user(result.image_id, requester.address, caller=owner.address)

        # Then: 認可済み
        assert await registry.is_authorized(result.image_id, requester.address)

    @pytest.mark.asyncio
    async def test_authorize_is_idempotent(self, upload_service, registry, ledger, owner, requester, png_bytes):
        result = await upload_service.upload(png_bytes, owner.address)

        await registry.authorize_user(result.image_id, requester.address, caller=owner.address)
        await registry.authorize_user(result.image_id, requester.address, caller=owner.address)

        assert [e.grantee for e in ledger.authorizations(result.image_id)] == [requester.address]

    @pytest.mark.asyncio
    async def test_only_owner_can_authorize(self, upload_service, registry, owner, requester, stranger, png_bytes):
        result = await upload_service.upload(png_bytes, owner.address)

        with pytest.raises(AuthorizationError):
            await registry.authorize_user(result.image_id, stranger.address, caller=requester.address)
        assert not await registry.is_authorized(result.image_id, stranger.address)

    @pytest.mark.asyncio
    async def test_authorization_is_monotonic(self, upload_service, registry, clock, owner, requester, stranger):
        """一度認可されたら、その後どんな操作をしても認可されたまま"""
        first = await upload_service.upload(make_png((9, 9, 9)), owner.address)
        await registry.authorize_user(first.image_id, requester.address, caller=owner.address)

        # 他の操作を重ねる
        second = await upload_service.upload(make_png((8, 8, 8)), owner.address)
        await registry.authorize_user(second.image_id, stranger.address, caller=owner.address)
        await registry.authorize_user(first.image_id, stranger.address, caller=owner.address)
        clock.advance(365 * 86400)
        with pytest.raises(AuthorizationError):
            await registry.authorize_user(first.image_id, requester.address, caller=stranger.address)

        assert await registry.is_authorized(first.image_id, requester.address)
        assert not await registry.is_authorized(second.image_id, requester.address)

    @pytest.mark.asyncio
    async def test_addresses_are_case_insensitive(self, upload_service, registry, owner, requester, png_bytes):
        result = await upload_service.upload(png_bytes, owner.address)
        await registry.authorize_user(result.image_id, requester.address.upper().replace("0X", "0x"),
                                      caller=owner.address)

        assert await registry.is_authorized(result.image_id, requester.address)


class TestTimeouts:
    """外部呼び出しタイムアウトのテスト"""

    @pytest.mark.asyncio
    async def test_slow_ledger_raises_external_service_error(self, registry, ledger):
        async def slow():
            await asyncio.sleep(1)
            return 0

        registry.timeout = 0.01
        with patch.object(ledger, "get_total_images", slow):
            with pytest.raises(ExternalServiceError) as exc_info:
                await registry.get_total_images()

        assert exc_info.value.retryable
        assert exc_info.value.details["service_name"] == "ledger"


"""
アイデンティティと構造化認可のテスト
"""

import os

import pytest

from secure_image.core.exceptions import AuthorizationError, ConfigurationError, ValidationError
from secure_image.core.identity import RequesterIdentity, load_or_create_identity
from secure_image.domain.models.authorization import (
    SECONDS_PER_DAY,
    SignedAuthorization,
    StructuredAuthorization,
    address_from_verify_key,
    normalize_address,
)

CONTRACT = "0x5fbdb2315678afecb367f032d93f642f64180aa3"
PUBLIC_KEY = "0x" + "ab" * 32


def _authorization(**overrides):
    fields = {
        "public_key": PUBLIC_KEY,
        "bound_contract_addresses": (CONTRACT,),
        "start_timestamp": 1000,
    }
    fields.update(overrides)
    return StructuredAuthorization(**fields)


class TestRequesterIdentity:
    """RequesterIdentity のテスト"""

    def test_address_format(self):
        identity = RequesterIdentity.generate()

        assert identity.address.startswith("0x")
        assert len(identity.address) == 42
        assert identity.address == address_from_verify_key(identity.verify_key)

    def test_from_seed_is_deterministic(self):
        assert RequesterIdentity.from_seed(b"\x07" * 32).address == RequesterIdentity.from_seed(b"\x07" * 32).address

    def test_save_and_load(self, tmp_path):
        path = tmp_path / "identity"
        identity = RequesterIdentity.generate()

        identity.save(path)

        assert (path.stat().st_mode & 0o777) == 0o600
        assert RequesterIdentity.load(path).address == identity.address

    def test_load_rejects_loose_permissions(self, tmp_path):
        path = tmp_path / "identity"
        RequesterIdentity.generate().save(path)
        os.chmod(path, 0o644)

        with pytest.raises(ConfigurationError):
            RequesterIdentity.load(path)

    def test_load_missing_file(self, tmp_path):
        with pytest.raises(ConfigurationError):
            RequesterIdentity.load(tmp_path / "missing")

    def test_load_malformed_file(self, tmp_path):
        path = tmp_path / "identity"
        path.write_text("not hex")
        os.chmod(path, 0o600)

        with pytest.raises(ConfigurationError):
            RequesterIdentity.load(path)

    def test_load_or_create(self, tmp_path):
        path = tmp_path / "identity"

        created = load_or_create_identity(path, create=True)

        assert load_or_create_identity(path).address == created.address

    def test_repr_has_no_secret(self):
        identity = RequesterIdentity.generate()
        assert identity.address in repr(identity)


class TestStructuredAuthorization:
    """構造化認可ペイロードのテスト"""

    def test_addresses_are_normalized(self):
        authorization = _authorization(bound_contract_addresses=(CONTRACT.upper().replace("0X", "0x"),))
        assert authorization.bound_contract_addresses == (CONTRACT,)

    @pytest.mark.parametrize("overrides", [
        {"public_key": "0x1234"},
        {"bound_contract_addresses": ("0x1234",)},
        {"duration_days": 0},
        {"duration_days": 366},
        {"start_timestamp": -1},
    ])
    def test_invalid_fields(self, overrides):
        with pytest.raises(ValidationError):
            _authorization(**overrides)

    def test_window(self):
        authorization = _authorization(duration_days=2)

        assert authorization.end_timestamp == 1000 + 2 * SECONDS_PER_DAY
        assert not authorization.is_active(999)
        assert authorization.is_active(1000)
        assert authorization.is_active(1000 + 2 * SECONDS_PER_DAY)
        assert not authorization.is_active(1001 + 2 * SECONDS_PER_DAY)

    def test_canonical_bytes_are_stable(self):
        assert _authorization().canonical_bytes() == _authorization().canonical_bytes()
        assert _authorization().canonical_bytes() != _authorization(start_timestamp=1001).canonical_bytes()

    def test_dict_roundtrip(self):
        authorization = _authorization()
        assert StructuredAuthorization.from_dict(authorization.to_dict()) == authorization


class TestSignedAuthorization:
    """署名済み認可のテスト"""

    def test_verify(self):
        identity = RequesterIdentity.generate()
        signed = identity.sign(_authorization())

        signed.verify(identity.address)
        assert signed.signer_address == identity.address

    def test_verify_wrong_requester(self):
        signed = RequesterIdentity.generate().sign(_authorization())

        with pytest.raises(AuthorizationError):
            signed.verify(RequesterIdentity.generate().address)

    def test_modified_payload_fails(self):
        identity = RequesterIdentity.generate()
        signed = identity.sign(_authorization())
        modified = SignedAuthorization(_authorization(duration_days=365), signed.signature, signed.verify_key)

        with pytest.raises(AuthorizationError):
            modified.verify(identity.address)

    def test_dict_roundtrip(self):
        identity = RequesterIdentity.generate()
        signed = identity.sign(_authorization())

        restored = SignedAuthorization.from_dict(signed.to_dict())

        assert restored == signed
        restored.verify(identity.address)

    @pytest.mark.parametrize("data", [
        {},
        {"authorization": {}, "signature": "0x00", "verify_key": "0x00"},
        {"authorization": _authorization().to_dict(), "signature": "zz", "verify_key": "0x00"},
    ])
    def test_from_dict_malformed(self, data):
        with pytest.raises(ValidationError):
            SignedAuthorization.from_dict(data)


class TestAddresses:
    def test_normalize(self):
        assert normalize_address("0x" + "AB" * 20) == "0x" + "ab" * 20

    @pytest.mark.parametrize("value", ["", "0x", "ab" * 20, "0x" + "zz" * 20, None])
    def test_normalize_rejects(self, value):
        with pytest.raises(ValidationError):
            normalize_address(value)

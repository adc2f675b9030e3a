"""
ログ・例外・外部呼び出しのテスト
"""

import asyncio
import io
import json
import logging

import aiohttp
import pytest

from secure_image.core.exceptions import (
    AuthorizationError,
    ExternalServiceError,
    NotFoundError,
    SecureImageError,
    ValidationError,
)
from secure_image.core.external import call_external
from secure_image.core.logging import StructuredFormatter, get_logger, log_business_event, log_error


@pytest.fixture
def captured():
    """secure_image ロガーの出力を捕捉"""
    stream = io.StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("secure_image")
    root.addHandler(handler)
    old_level = root.level
    root.setLevel(logging.DEBUG)
    yield stream
    root.removeHandler(handler)
    root.setLevel(old_level)


def _records(stream):
    return [json.loads(line) for line in stream.getvalue().splitlines() if line]


class TestStructuredLogging:
    """構造化ログのテスト"""

    def test_logger_is_namespaced(self):
        assert get_logger("tests.module").name == "secure_image.tests.module"
        assert get_logger("secure_image.core").name == "secure_image.core"

    def test_business_event(self, captured):
        log_business_event(get_logger("tests"), "image_uploaded", actor="0xabc", image_id=3)

        record = _records(captured)[-1]
        assert record["level"] == "INFO"
        assert record["extra"]["business_event"] == "image_uploaded"
        assert record["extra"]["actor"] == "0xabc"
        assert record["extra"]["image_id"] == 3

    def test_error_includes_code_and_details(self, captured):
        error = NotFoundError("Image not found: 9", details={"image_id": 9}).with_step("fetching_blob")

        log_error(get_logger("tests"), error, {"image_id": 9})

        record = _records(captured)[-1]
        assert record["exception"]["error_code"] == "NotFoundError"
        assert record["exception"]["details"] == {"image_id": 9, "step": "fetching_blob"}


class TestExceptions:
    """例外階層のテスト"""

    def test_hierarchy(self):
        for error in (ValidationError("x"), NotFoundError("x"), AuthorizationError("x"),
                      ExternalServiceError("x")):
            assert isinstance(error, SecureImageError)

    def test_only_external_errors_are_retryable(self):
        assert ExternalServiceError("x").retryable
        assert not AuthorizationError("x").retryable

    def test_with_step_keeps_first_step(self):
        error = AuthorizationError("x").with_step("releasing_key").with_step("decrypting")
        assert error.step == "releasing_key"

    def test_validation_error_details(self):
        error = ValidationError("bad", field="key", value="0x")
        assert error.details == {"field": "key", "value": "0x"}
        assert error.error_code == "ValidationError"


class TestCallExternal:
    """外部呼び出しラッパーのテスト"""

    @pytest.mark.asyncio
    async def test_returns_result(self):
        async def ok():
            return 42

        assert await call_external(ok(), "svc", 1.0) == 42

    @pytest.mark.asyncio
    async def test_timeout(self):
        with pytest.raises(ExternalServiceError) as exc_info:
            await call_external(asyncio.sleep(1), "svc", 0.01)

        assert exc_info.value.details["service_name"] == "svc"

    @pytest.mark.asyncio
    async def test_transport_error(self):
        async def broken():
            raise aiohttp.ClientConnectionError("refused")

        with pytest.raises(ExternalServiceError):
            await call_external(broken(), "svc", 1.0)

    @pytest.mark.asyncio
    async def test_domain_errors_pass_through(self):
        async def missing():
            raise NotFoundError("nope")

        with pytest.raises(NotFoundError):
            await call_external(missing(), "svc", 1.0)

"""
統一ログシステム
構造化ログによる一貫したログ出力

鍵・平文・署名は絶対にログに出さない。
"""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from .exceptions import SecureImageError

ROOT_LOGGER_NAME = "secure_image"

_RESERVED_ATTRS = frozenset([
    'name', 'msg', 'args', 'levelname', 'levelno', 'pathname',
    'filename', 'module', 'lineno', 'funcName', 'created',
    'msecs', 'relativeCreated', 'thread', 'threadName',
    'processName', 'process', 'getMessage', 'exc_info',
    'exc_text', 'stack_info', 'taskName',
])


class StructuredFormatter(logging.Formatter):
    """構造化ログフォーマッター"""

    def format(self, record: logging.LogRecord) -> str:
        log_entry: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "file": record.filename,
            "line": record.lineno,
            "function": record.funcName,
        }

        extra_fields = {
            key: value for key, value in record.__dict__.items()
            if key not in _RESERVED_ATTRS
        }
        if extra_fields:
            log_entry["extra"] = extra_fields

        if record.exc_info:
            log_entry["exception"] = {
                "type": record.exc_info[0].__name__ if record.exc_info[0] else None,
                "message": str(record.exc_info[1]) if record.exc_info[1] else None
            }

            # SecureImageErrorの場合はエラーコードと詳細を含める
            if isinstance(record.exc_info[1], SecureImageError):
                log_entry["exception"]["error_code"] = record.exc_info[1].error_code
                log_entry["exception"]["details"] = record.exc_info[1].details

        return json.dumps(log_entry, ensure_ascii=False, separators=(',', ':'), default=str)


class SecureImageLogger:
    """統一ログシステム"""

    _loggers: Dict[str, logging.Logger] = {}
    _configured = False

    @classmethod
    def configure(cls, log_level: str = "INFO", stream=None):
        """ログシステムを設定（最初の1回のみ有効）"""
        if cls._configured:
            return

        root_logger = logging.getLogger(ROOT_LOGGER_NAME)
        root_logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))

        handler = logging.StreamHandler(stream or sys.stderr)
        handler.setFormatter(StructuredFormatter())
        root_logger.addHandler(handler)

        cls._configured = True

    @classmethod
    def get_logger(cls, name: str) -> logging.Logger:
        """ログインスタンスを取得"""
        if not cls._configured:
            cls.configure()

        if name not in cls._loggers:
            prefix = f"{ROOT_LOGGER_NAME}."
            logger_name = name if name.startswith(prefix) or name == ROOT_LOGGER_NAME else f"{prefix}{name}"
            cls._loggers[name] = logging.getLogger(logger_name)

        return cls._loggers[name]


def get_logger(name: str) -> logging.Logger:
    """ロガーを取得"""
    return SecureImageLogger.get_logger(name)


def log_error(logger: logging.Logger, error: Exception, context: Optional[Dict[str, Any]] = None):
    """エラーログ"""
    extra_info: Dict[str, Any] = {"event_type": "error"}
    if context:
        extra_info.update(context)

    logger.error(f"Error occurred: {error}", exc_info=error, extra=extra_info)


def log_business_event(logger: logging.Logger, event: str, actor: Optional[str] = None,
                       **kwargs):
    """ビジネスイベントログ（アップロード・認可・復号の各段階）"""
    extra_info: Dict[str, Any] = {
        "event_type": "business_event",
        "business_event": event
    }
    if actor:
        extra_info["actor"] = actor
    extra_info.update(kwargs)

    logger.info(f"Business event: {event}", extra=extra_info)

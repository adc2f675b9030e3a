"""
外部サービス呼び出しのタイムアウト管理

Blob Store / Ledger / Confidential Compute への呼び出しは必ずここを通す。
タイムアウトは認可ウィンドウとは独立に設定する。
"""

import asyncio
from collections.abc import Awaitable
from typing import TypeVar

import aiohttp

from .exceptions import ExternalServiceError

T = TypeVar("T")

DEFAULT_TIMEOUT = 30.0


async def call_external(awaitable: Awaitable[T], service_name: str,
                        timeout: float = DEFAULT_TIMEOUT) -> T:
    """
    外部サービス呼び出しをタイムアウト付きで実行

    ドメイン例外（NotFoundError 等）はそのまま伝播させ、
    タイムアウトと通信エラーだけを ExternalServiceError に変換する。

    Args:
        awaitable: 呼び出し
        service_name: サービス名（エラー詳細用）
        timeout: タイムアウト秒数

    Returns:
        呼び出し結果
    """
    try:
        return await asyncio.wait_for(awaitable, timeout=timeout)
    except asyncio.TimeoutError as e:
        raise ExternalServiceError(
            f"{service_name} did not respond within {timeout}s",
            service_name=service_name,
        ) from e
    except (aiohttp.ClientError, ConnectionError) as e:
        raise ExternalServiceError(
            f"{service_name} is unreachable: {e}",
            service_name=service_name,
        ) from e

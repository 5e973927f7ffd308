"""Transient httpx error detection shared by all clients.

Private module - import from _retry package.
"""

from __future__ import annotations

import httpx

__all__ = [
    'is_retryable_httpx_error',
]


def is_retryable_httpx_error(exc: BaseException | None) -> bool:
    """Check if exception is a transient httpx transport failure.

    Retryable:
    - httpx.TimeoutException (connect/read/write/pool timeouts)
    - httpx.NetworkError (connect/read/write/close errors)
    - httpx.RemoteProtocolError (server sent invalid HTTP)

    Everything else (LocalProtocolError, ProxyError, UnsupportedProtocol,
    DecodingError) is a bug or a config problem and should surface immediately.
    """
    if isinstance(exc, (httpx.TimeoutException, httpx.NetworkError)):
        return True

    return isinstance(exc, httpx.RemoteProtocolError)

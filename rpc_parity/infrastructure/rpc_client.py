"""
JSON-RPC client adapter for the RPC parity monitor.

Gives both backends the same request/response shape:
- `call` for a single request, `batch_call` for an ordered batch
- backend-level failures (JSON-RPC error objects, HTTP error statuses) come back
  as a `BackendError` value inside the result, never as an exception
- transport failures (connection refused, timeouts, unparseable bodies) raise
  `RpcTransportError`; callers treat them as a backend error for that call
- every result carries the elapsed wall time of the request

Includes retry logic for connection establishment failures using tenacity.
"""

from __future__ import annotations

import itertools
import time
from dataclasses import dataclass, field
from typing import Any, List, Optional, Sequence, Tuple

import httpx
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from rpc_parity.config import Settings, get_settings
from rpc_parity.domain.models import Side

RpcRequest = Tuple[str, List[Any]]


class RpcTransportError(Exception):
    """The request could not be completed at the transport level."""

    def __init__(self, message: str, cause: Optional[BaseException] = None) -> None:
        super().__init__(message)
        self.message = message
        self.cause = cause


@dataclass(frozen=True)
class BackendError:
    """A failed call, returned as a value."""

    message: str
    code: Optional[int] = None

    def __str__(self) -> str:
        if self.code is None:
            return self.message
        return f"[{self.code}] {self.message}"


@dataclass(frozen=True)
class RpcResult:
    value: Any = None
    error: Optional[BackendError] = None
    latency_ms: Optional[float] = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass(frozen=True)
class BatchEntry:
    id: Any
    value: Any = None
    error: Optional[BackendError] = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass(frozen=True)
class BatchResult:
    """
    Entries in the order the backend returned them.

    `error` is set when the batch failed as a whole; `entries` is then empty.
    """

    entries: List[BatchEntry] = field(default_factory=list)
    latency_ms: Optional[float] = None
    error: Optional[BackendError] = None

    @property
    def ok(self) -> bool:
        return self.error is None


def _backend_error(payload: Any) -> BackendError:
    if isinstance(payload, dict):
        code = payload.get("code")
        return BackendError(
            message=str(payload.get("message", payload)),
            code=code if isinstance(code, int) else None,
        )
    return BackendError(message=str(payload))


class RpcClient:
    """
    Async JSON-RPC client for one backend.

    Parameters
    ----------
    url : str
        HTTP(S) endpoint of the backend.
    side : Side
        Which side of the comparison this client talks to (used in messages).
    timeout : float
        Per-request timeout in seconds.
    retry_attempts : int
        Attempts for establishing a connection before giving up.
    transport : httpx.AsyncBaseTransport, optional
        Custom transport (tests use `httpx.MockTransport`).
    """

    def __init__(
        self,
        url: str,
        side: Side,
        timeout: float = 10.0,
        retry_attempts: int = 2,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.url = url
        self.side = side
        self._timeout = timeout
        self._retry_attempts = max(retry_attempts, 1)
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None
        self._ids = itertools.count(1)

    async def connect(self) -> None:
        if self._client is not None:
            return
        self._client = httpx.AsyncClient(
            timeout=self._timeout,
            transport=self._transport,
            headers={"Accept": "application/json", "Content-Type": "application/json"},
        )

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "RpcClient":
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    def _ensure_connected(self) -> httpx.AsyncClient:
        if self._client is None:
            raise RuntimeError(f"{self.side.value} client not connected. Call connect() first.")
        return self._client

    async def _post(self, payload: Any) -> Tuple[Any, Optional[BackendError], float]:
        """
        POST a JSON-RPC payload.

        Returns the decoded body (None on HTTP error status), an HTTP-level
        backend error if any, and the elapsed milliseconds.
        """
        client = self._ensure_connected()
        start = time.perf_counter()
        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(self._retry_attempts),
                wait=wait_exponential(multiplier=0.2, max=2),
                retry=retry_if_exception_type((httpx.ConnectError, httpx.ConnectTimeout)),
                reraise=True,
            ):
                with attempt:
                    response = await client.post(self.url, json=payload)
        except httpx.HTTPError as exc:
            raise RpcTransportError(
                f"{self.side.value} transport failure: {type(exc).__name__}: {exc}", cause=exc
            ) from exc
        latency_ms = (time.perf_counter() - start) * 1000

        if response.status_code >= 400:
            status = response.status_code
            return None, BackendError(f"HTTP {status}", code=status), latency_ms

        try:
            body = response.json()
        except ValueError as exc:
            raise RpcTransportError(
                f"{self.side.value} returned a non-JSON body", cause=exc
            ) from exc
        return body, None, latency_ms

    async def call(self, method: str, params: Sequence[Any]) -> RpcResult:
        payload = {
            "jsonrpc": "2.0",
            "id": next(self._ids),
            "method": method,
            "params": list(params),
        }
        body, http_error, latency_ms = await self._post(payload)
        if http_error is not None:
            return RpcResult(error=http_error, latency_ms=latency_ms)
        if not isinstance(body, dict):
            raise RpcTransportError(f"{self.side.value} returned a malformed response to {method}")
        if body.get("error") is not None:
            return RpcResult(error=_backend_error(body["error"]), latency_ms=latency_ms)
        if "result" not in body:
            missing = BackendError("response has neither result nor error")
            return RpcResult(error=missing, latency_ms=latency_ms)
        return RpcResult(value=body["result"], latency_ms=latency_ms)

    async def batch_call(self, requests: Sequence[RpcRequest]) -> BatchResult:
        """
        Send `requests` as one batch with correlation ids 1..n.
        """
        payload = [
            {"jsonrpc": "2.0", "id": index, "method": method, "params": list(params)}
            for index, (method, params) in enumerate(requests, start=1)
        ]
        body, http_error, latency_ms = await self._post(payload)
        if http_error is not None:
            return BatchResult(error=http_error, latency_ms=latency_ms)
        if isinstance(body, dict) and body.get("error") is not None:
            return BatchResult(error=_backend_error(body["error"]), latency_ms=latency_ms)
        if not isinstance(body, list):
            raise RpcTransportError(f"{self.side.value} returned a malformed batch response")

        entries: List[BatchEntry] = []
        for item in body:
            if not isinstance(item, dict):
                malformed = BackendError(f"malformed entry: {item!r}")
                entries.append(BatchEntry(id=None, error=malformed))
            elif item.get("error") is not None:
                entries.append(BatchEntry(id=item.get("id"), error=_backend_error(item["error"])))
            else:
                entries.append(BatchEntry(id=item.get("id"), value=item.get("result")))
        return BatchResult(entries=entries, latency_ms=latency_ms)

    async def block_number(self) -> RpcResult:
        """`eth_blockNumber`, with the value decoded to an int."""
        result = await self.call("eth_blockNumber", [])
        if not result.ok:
            return result
        try:
            height = int(result.value, 16) if isinstance(result.value, str) else int(result.value)
        except (TypeError, ValueError):
            return RpcResult(
                error=BackendError(f"unparseable block number {result.value!r}"),
                latency_ms=result.latency_ms,
            )
        return RpcResult(value=height, latency_ms=result.latency_ms)


def build_clients(
    settings: Optional[Settings] = None,
    primary_transport: Optional[httpx.AsyncBaseTransport] = None,
    reference_transport: Optional[httpx.AsyncBaseTransport] = None,
) -> Tuple[RpcClient, RpcClient]:
    """
    Create the (primary, reference) client pair from settings.
    """
    settings = settings or get_settings()
    primary = RpcClient(
        settings.primary_rpc_url,
        Side.PRIMARY,
        timeout=settings.rpc_timeout_seconds,
        retry_attempts=settings.rpc_retry_attempts,
        transport=primary_transport,
    )
    reference = RpcClient(
        settings.reference_rpc_url,
        Side.REFERENCE,
        timeout=settings.rpc_timeout_seconds,
        retry_attempts=settings.rpc_retry_attempts,
        transport=reference_transport,
    )
    return primary, reference


__all__ = [
    "BackendError",
    "BatchEntry",
    "BatchResult",
    "RpcClient",
    "RpcRequest",
    "RpcResult",
    "RpcTransportError",
    "build_clients",
]

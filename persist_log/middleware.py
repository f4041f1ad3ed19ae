"""Request/response capture middleware.

Every exchange yields two records sharing the request's ``METHOD URL``
line: the request head and body, pushed before the handler runs, and the
rendered response head and body, pushed once the last body chunk has
been forwarded to the client.
"""

import logging
from collections.abc import AsyncIterator
from http import HTTPStatus
from typing import Any, Protocol

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response, StreamingResponse
from starlette.types import ASGIApp

from .models import TxRecord

logger = logging.getLogger(__name__)


class RecordSink(Protocol):
    def push(self, record: Any) -> None: ...


def canonical_header(name: str) -> str:
    """``content-type`` -> ``Content-Type``."""
    return "-".join(part[:1].upper() + part[1:].lower() for part in name.split("-"))


def request_target(request: Request) -> str:
    raw_path = request.scope.get("raw_path")
    if raw_path:
        path = raw_path.split(b"?", 1)[0].decode("latin-1")
    else:
        path = request.url.path
    query = request.scope.get("query_string", b"")
    if query:
        path = f"{path}?{query.decode('latin-1')}"
    return path


def correlation_line(request: Request) -> str:
    """``METHOD scheme://host/raw/target?query``, keeping escapes like ``%2F`` intact."""
    url = request.url
    return f"{request.method} {url.scheme}://{url.netloc}{request_target(request)}"


def dump_request_head(request: Request) -> bytes:
    """Serialize the request line and headers as they came off the wire."""
    version = request.scope.get("http_version", "1.1")
    lines = [f"{request.method} {request_target(request)} HTTP/{version}"]
    raw = request.headers.raw
    host = request.headers.get("host")
    if host:
        lines.append(f"Host: {host}")
    lines.extend(
        f"{canonical_header(k.decode('latin-1'))}: {v.decode('latin-1')}"
        for k, v in raw
        if k.lower() != b"host"
    )
    return ("\r\n".join(lines) + "\r\n\r\n").encode("latin-1")


async def read_body(request: Request) -> bytes:
    # Starlette caches the body and replays it to the downstream app
    return await request.body()


def render_status_line(status_code: int) -> bytes:
    try:
        reason = HTTPStatus(status_code).phrase
    except ValueError:
        reason = ""
    return f"HTTP/1.1 {status_code} {reason}\r\n".encode("latin-1")


def render_headers(raw_headers: list[tuple[bytes, bytes]]) -> bytes:
    """Headers in wire form, sorted by name, without the closing blank line."""
    lines = sorted(
        ((canonical_header(k.decode("latin-1")), v.decode("latin-1")) for k, v in raw_headers),
        key=lambda item: item[0],
    )
    return "".join(f"{k}: {v}\r\n" for k, v in lines).encode("latin-1")


class RequestLogger(BaseHTTPMiddleware):
    """Pushes a request and a response record for each exchange to ``writer``."""

    def __init__(self, app: ASGIApp, writer: RecordSink) -> None:
        super().__init__(app)
        self.writer = writer

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        line = correlation_line(request)
        try:
            head = dump_request_head(request)
        except Exception as e:
            logger.error("Failed to read request headers: %s", e)
            return Response(status_code=400)
        try:
            body = await read_body(request)
        except Exception as e:
            logger.error("Failed to read request body: %s", e)
            return Response(status_code=400)
        self.writer.push(TxRecord.for_request(line, head, body))

        response = await call_next(request)

        try:
            status = render_status_line(response.status_code)
        except Exception as e:
            logger.error("Failed to dump response status: %s", e)
            return await _discard(response)
        try:
            headers = render_headers(response.raw_headers)
        except Exception as e:
            logger.error("Failed to dump response headers: %s", e)
            return await _discard(response)

        captured = StreamingResponse(
            self._tee(line, status + headers, response.body_iterator),
            status_code=response.status_code,
            background=response.background,
        )
        captured.raw_headers = list(response.raw_headers)
        return captured

    async def _tee(
        self, line: str, head: bytes, body_iterator: AsyncIterator[Any]
    ) -> AsyncIterator[bytes]:
        """Forward each chunk as it arrives; push the response once the body ends."""
        chunks = []
        async for chunk in body_iterator:
            if isinstance(chunk, str):
                chunk = chunk.encode("utf-8")
            chunks.append(bytes(chunk))
            yield chunk
        self.writer.push(TxRecord.for_response(line, head, b"".join(chunks)))


async def _discard(response: Response) -> Response:
    # Nothing has been sent yet; drain the handler's body and answer 500
    async for _ in response.body_iterator:
        pass
    return Response(status_code=500)

"""
Admission proxy - local listener forwarding Kubernetes API calls.

Operator code running locally talks to http://localhost:8888 without any
credentials; the proxy forwards every request to the cluster API server
with the manager's credentials and streams the response back.
"""

import asyncio
import logging
import socket
from typing import Optional

import httpx
import uvicorn
from fastapi import FastAPI, Request, Response
from fastapi.responses import JSONResponse, StreamingResponse
from starlette.background import BackgroundTask

from kubelaunch.errors import ProxyStartFailed
from kubelaunch.modules.runtime.completion import CompletionSlot
from kubelaunch.modules.runtime.manager import STREAM_TIMEOUT, ClusterManager

logger = logging.getLogger(__name__)

# Headers owned by each hop, never forwarded
HOP_BY_HOP_HEADERS = {
    "connection",
    "keep-alive",
    "proxy-authenticate",
    "proxy-authorization",
    "te",
    "trailers",
    "transfer-encoding",
    "upgrade",
    "host",
    "content-length",
    "authorization",
}

PROXY_METHODS = ["GET", "POST", "PUT", "PATCH", "DELETE", "HEAD", "OPTIONS"]
STREAMING_PARAMS = ("watch", "follow")


def _forward_headers(headers) -> dict:
    return {k: v for k, v in headers.items() if k.lower() not in HOP_BY_HOP_HEADERS}


def _is_streaming(request: Request) -> bool:
    return any(request.query_params.get(name, "").lower() in ("true", "1") for name in STREAMING_PARAMS)


def create_proxy_app(manager: ClusterManager) -> FastAPI:
    """Create the FastAPI app that forwards every path to the cluster."""
    app = FastAPI(
        title="kubelaunch proxy",
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )

    @app.api_route("/{path:path}", methods=PROXY_METHODS)
    async def forward(path: str, request: Request):
        upstream = manager.client.build_request(
            request.method,
            "/" + path,
            params=request.query_params.multi_items(),
            headers=_forward_headers(request.headers),
            content=await request.body(),
            timeout=STREAM_TIMEOUT if _is_streaming(request) else httpx.USE_CLIENT_DEFAULT,
        )
        try:
            response = await manager.client.send(upstream, stream=True)
        except httpx.RequestError as e:
            logger.error(f"Proxy request {request.method} /{path} failed: {e}")
            return JSONResponse(
                status_code=502,
                content={"kind": "Status", "status": "Failure", "message": str(e), "code": 502},
            )

        if request.method == "HEAD":
            await response.aclose()
            return Response(
                status_code=response.status_code,
                headers=_forward_headers(response.headers),
            )

        return StreamingResponse(
            response.aiter_raw(),
            status_code=response.status_code,
            headers=_forward_headers(response.headers),
            background=BackgroundTask(response.aclose),
        )

    return app


class ProxyServer:
    """Serves the proxy app on a socket bound before start() returns."""

    def __init__(self, manager: ClusterManager, host: str = "localhost", port: int = 8888):
        self.manager = manager
        self.host = host
        self.port = port
        self.server: Optional[uvicorn.Server] = None
        self.task: Optional[asyncio.Task] = None
        self._socket: Optional[socket.socket] = None

    def _bind(self) -> socket.socket:
        family, socktype, proto, _, address = socket.getaddrinfo(
            self.host, self.port, type=socket.SOCK_STREAM
        )[0]
        sock = socket.socket(family, socktype, proto)
        try:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            sock.bind(address)
            sock.listen(128)
            sock.setblocking(False)
        except OSError:
            sock.close()
            raise
        return sock

    def start(self, slot: CompletionSlot) -> None:
        """
        Bind the listener and start serving in the background.

        Raises:
            ProxyStartFailed: If the address cannot be bound
        """
        try:
            self._socket = self._bind()
        except OSError as e:
            raise ProxyStartFailed(f"error starting proxy on {self.host}:{self.port}: ({e})") from e
        # Port 0 asks the OS for a free port
        self.port = self._socket.getsockname()[1]

        config = uvicorn.Config(
            create_proxy_app(self.manager),
            log_config=None,
            lifespan="off",
            access_log=True,
        )
        self.server = uvicorn.Server(config)
        self.task = asyncio.ensure_future(self._serve(slot))
        logger.info(f"Proxy listening on http://{self.host}:{self.port}")

    async def _serve(self, slot: CompletionSlot) -> None:
        try:
            await self.server.serve(sockets=[self._socket])
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Proxy stopped with error: {e}")
            slot.deliver("proxy", e)
        else:
            logger.info("Proxy stopped")
            slot.deliver("proxy", None)

    @property
    def url(self) -> str:
        return f"http://{self.host}:{self.port}"

    async def stop(self) -> None:
        if self.server is not None:
            self.server.should_exit = True
        if self.task is not None:
            try:
                await self.task
            except asyncio.CancelledError:
                pass
        if self._socket is not None:
            self._socket.close()
            self._socket = None

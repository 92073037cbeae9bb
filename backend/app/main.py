from __future__ import annotations

import asyncio
import logging
import os
import signal
import threading
from typing import Optional

from dotenv import load_dotenv

load_dotenv()

from fastapi import Depends, FastAPI, Request  # noqa: E402
from fastapi.concurrency import run_in_threadpool  # noqa: E402
from fastapi.middleware.cors import CORSMiddleware  # noqa: E402
from fastapi.responses import JSONResponse, Response  # noqa: E402
from prometheus_client import make_asgi_app as make_prom_app  # noqa: E402

from .auth import require_auth  # noqa: E402
from .config import RelayConfig  # noqa: E402
from .errors import InvalidRequest, RelayBusy, RelayError  # noqa: E402
from .logging_config import setup_logging  # noqa: E402
from .models import ErrorResponse, TryOnRequest, TryOnResponse  # noqa: E402
from .ratelimit import rate_limit  # noqa: E402
from .relay import CancelToken, TryOnRelay  # noqa: E402

logger = logging.getLogger(__name__)

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET, POST, PUT, DELETE, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type, Authorization, X-Client-Info, Apikey",
}
DISCONNECT_CHECK_INTERVAL = 0.5
BUSY_RETRY_AFTER = "5"

ERROR_RESPONSES = {
    400: {"model": ErrorResponse},
    500: {"model": ErrorResponse},
    503: {"model": ErrorResponse},
}


async def _watch_disconnect(request: Request, cancel: CancelToken) -> None:
    while not cancel.cancelled:
        if await request.is_disconnected():
            logger.info("caller disconnected; cancelling relay")
            cancel.cancel()
            return
        await asyncio.sleep(DISCONNECT_CHECK_INTERVAL)


def install_drain_hook(relay: TryOnRelay, signals=(signal.SIGINT, signal.SIGTERM)) -> None:
    """
    Fire every in-flight cancel token as soon as a stop signal arrives, then
    hand the signal to whoever held it before (uvicorn's exit handler).
    uvicorn only runs lifespan shutdown after open connections drain.
    """

    def _chain(previous):
        def _handler(signum, frame):
            cancelled = relay.cancel_all()
            if cancelled:
                logger.info("signal %d: cancelled %d in-flight relays", signum, cancelled)
            if callable(previous):
                previous(signum, frame)
            elif previous == signal.SIG_DFL:
                signal.signal(signum, signal.SIG_DFL)
                os.kill(os.getpid(), signum)

        return _handler

    for sig in signals:
        signal.signal(sig, _chain(signal.getsignal(sig)))


async def _read_tryon_request(request: Request) -> TryOnRequest:
    try:
        data = await request.json()
    except ValueError:
        raise InvalidRequest("Request body must be JSON")
    if not isinstance(data, dict):
        raise InvalidRequest("Request body must be a JSON object")
    return TryOnRequest.model_validate(data)


def create_app(config: Optional[RelayConfig] = None, relay: Optional[TryOnRelay] = None) -> FastAPI:
    config = config or (relay.config if relay else RelayConfig.from_settings())
    app = FastAPI(title="Fitroom Try-On Relay", version="0.1.0")
    app.state.relay = relay or TryOnRelay.from_config(config)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=False,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization", "X-Client-Info", "Apikey"],
    )
    app.mount("/metrics", make_prom_app())

    @app.exception_handler(RelayError)
    async def _relay_error(request: Request, exc: RelayError) -> JSONResponse:
        headers = dict(CORS_HEADERS)
        if isinstance(exc, RelayBusy):
            headers["Retry-After"] = BUSY_RETRY_AFTER
        if exc.status_code >= 500:
            logger.warning("relay error %s: %s", exc.code, exc.message)
        return JSONResponse(exc.to_dict(), status_code=exc.status_code, headers=headers)

    @app.get("/health")
    def health() -> dict:
        return {"status": "ok"}

    @app.get("/v1/config")
    def get_config(request: Request) -> dict:
        return {"config": request.app.state.relay.config.public()}

    @app.options("/v1/virtual-tryon")
    def virtual_tryon_preflight() -> Response:
        return Response(status_code=200, headers=CORS_HEADERS)

    @app.post("/v1/virtual-tryon", response_model=TryOnResponse, responses=ERROR_RESPONSES)
    async def virtual_tryon(
        request: Request,
        _caller=Depends(require_auth),
        _rl=Depends(rate_limit),
    ):
        body = await _read_tryon_request(request)
        relay: TryOnRelay = request.app.state.relay
        cancel = CancelToken()
        watcher = asyncio.create_task(_watch_disconnect(request, cancel))
        try:
            result = await run_in_threadpool(
                relay.relay, body.userImageUrl, body.garmentImageUrl, cancel
            )
        except RelayError:
            raise
        except Exception as e:  # noqa: BLE001
            logger.exception("unexpected relay failure")
            raise RelayError(str(e) or "Internal server error") from e
        finally:
            watcher.cancel()
        return JSONResponse(result.to_dict(), headers=CORS_HEADERS)

    @app.on_event("startup")
    def _startup() -> None:
        setup_logging()
        if threading.current_thread() is threading.main_thread():
            install_drain_hook(app.state.relay)
        if not app.state.relay.config.api_token:
            logger.warning("prediction API token is not configured; try-on requests will fail")

    @app.on_event("shutdown")
    def _shutdown() -> None:
        cancelled = app.state.relay.cancel_all()
        if cancelled:
            logger.info("cancelled %d in-flight relays on shutdown", cancelled)

    return app


app = create_app()

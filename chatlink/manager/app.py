"""FastAPI surface of the lifecycle manager."""

import logging
from typing import Any, Dict

from fastapi import FastAPI, Request, Response
from fastapi.responses import HTMLResponse, JSONResponse, RedirectResponse

from ..server.app import bearer_token
from .chain import ChainResponse
from .lifecycle import LifecycleManager

logger = logging.getLogger(__name__)


def to_response(result: ChainResponse) -> Response:
    if result.status in (301, 302, 303, 307, 308) and result.location:
        return RedirectResponse(result.location, status_code=result.status)
    if isinstance(result.body, str):
        return HTMLResponse(result.body, status_code=result.status)
    if result.body is None:
        return Response(status_code=result.status)
    return JSONResponse(result.body, status_code=result.status)


async def _json_body(request: Request) -> Dict[str, Any]:
    try:
        body = await request.json()
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {}


def create_manager_app(manager: LifecycleManager) -> FastAPI:
    app = FastAPI(title="chatlink lifecycle manager", docs_url=None, redoc_url=None)
    app.state.manager = manager

    @app.get("/configure")
    async def configure(request: Request):
        return to_response(await manager.dispatch("configure", dict(request.query_params)))

    @app.post("/install")
    async def install(request: Request):
        result = await manager.dispatch(
            "install", dict(request.query_params), await _json_body(request), bearer_token(request)
        )
        return to_response(result)

    @app.post("/uninstall")
    async def uninstall(request: Request):
        result = await manager.dispatch(
            "uninstall", dict(request.query_params), await _json_body(request), bearer_token(request)
        )
        return to_response(result)

    return app


__all__ = ["create_manager_app", "to_response"]

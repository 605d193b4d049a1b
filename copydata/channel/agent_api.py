from __future__ import annotations

from typing import Any, Optional

from fastapi import FastAPI, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse

from copydata.config import AgentConfig
from copydata.units import (
    ERROR_AUTHORIZATION,
    ERROR_INVALID_REQUEST,
    RoleAuthorizer,
    UnitExecutor,
)

MAX_UNIT_BYTES = 64 * 1024  # 64KB hard cap

_STATUS_BY_ERROR = {
    ERROR_AUTHORIZATION: 403,
    ERROR_INVALID_REQUEST: 400,
}


def _deny(status_code: int, reason: str, message: str, extra: Optional[dict[str, Any]] = None) -> JSONResponse:
    payload: dict[str, Any] = {"ok": False, "error": reason, "message": message}
    if extra:
        payload.update(extra)
    return JSONResponse(status_code=status_code, content=payload)


def create_app(executor: UnitExecutor) -> FastAPI:
    """
    Execution agent HTTP API.

    Every unit posted to /v1/units goes through the executor, which authorizes
    it before it runs.
    """
    app = FastAPI(title="copydata execution agent", version="0.1.x")

    @app.get("/v1/health")
    def health() -> dict[str, Any]:
        return {"ok": True}

    @app.post("/v1/units")
    async def run_unit(request: Request) -> JSONResponse:
        raw = await request.body()
        if len(raw) > MAX_UNIT_BYTES:
            return _deny(413, ERROR_INVALID_REQUEST, "payload_too_large")

        try:
            payload = await request.json()
        except Exception:
            return _deny(400, ERROR_INVALID_REQUEST, "invalid_json")

        # Units do blocking filesystem work; keep it off the event loop
        response = await run_in_threadpool(executor.execute_payload, payload)
        if response["ok"]:
            return JSONResponse(status_code=200, content=response)

        status_code = _STATUS_BY_ERROR.get(response["error"], 500)
        return JSONResponse(status_code=status_code, content=response)

    return app


app = create_app(UnitExecutor(RoleAuthorizer(AgentConfig.from_env().allowed_roles)))

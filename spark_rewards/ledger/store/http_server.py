"""HTTP API serving the rewards ledger.

Routes:
  POST /scores                      - add score-derived rewards (signed)
  POST /paid                        - deduct confirmed payouts (signed)
  GET  /scheduled-rewards           - all balances
  GET  /scores                      - legacy alias of /scheduled-rewards
  GET  /scheduled-rewards/{address} - one balance, "0" if unknown
  GET  /log?after=ID&limit=N        - balance change history (streamed)
"""

from __future__ import annotations

import json
import time
from typing import Any, Awaitable, Callable

import bittensor as bt
import pydantic
from aiohttp import web

from spark_rewards.ledger.errors import LedgerError, ValidationError
from spark_rewards.ledger.models import PaidRequest, ScoresRequest
from spark_rewards.ledger.service import LedgerService

MAX_BODY_SIZE = 1024 * 1024
LOG_PAGE_SIZE = 1000

Handler = Callable[[web.Request], Awaitable[web.StreamResponse]]


def _balances_json(balances: dict[str, int]) -> dict[str, str]:
    return {address: str(amount) for address, amount in balances.items()}


def _pydantic_message(err: pydantic.ValidationError) -> str:
    first = err.errors()[0]
    loc = ".".join(str(p) for p in first["loc"])
    return f".{loc}: {first['msg']}" if loc else first["msg"]


class LedgerHTTPServer:
    """Async HTTP server exposing LedgerService."""

    def __init__(
        self,
        service: LedgerService,
        host: str = "127.0.0.1",
        port: int = 8000,
        request_logging: bool = True,
    ):
        self.service = service
        self.host = host
        self.port = port
        self.request_logging = request_logging
        self._app: web.Application | None = None
        self._runner: web.AppRunner | None = None

    def build_app(self) -> web.Application:
        app = web.Application(
            client_max_size=MAX_BODY_SIZE,
            middlewares=[self._request_log_middleware, self._error_middleware],
        )
        app.router.add_post("/scores", self._handle_scores)
        app.router.add_post("/paid", self._handle_paid)
        app.router.add_get("/scheduled-rewards", self._handle_get_all)
        app.router.add_get("/scores", self._handle_get_all)
        app.router.add_get("/scheduled-rewards/{address}", self._handle_get_one)
        app.router.add_get("/log", self._handle_log)
        return app

    async def start(self) -> None:
        """Start the HTTP server."""
        self._app = self.build_app()
        self._runner = web.AppRunner(self._app)
        await self._runner.setup()
        site = web.TCPSite(self._runner, self.host, self.port)
        await site.start()
        bt.logging.info({"ledger_http": {"status": "started", "url": f"http://{self.host}:{self.port}"}})

    async def stop(self) -> None:
        """Stop the HTTP server."""
        if self._runner:
            await self._runner.cleanup()
            bt.logging.info({"ledger_http": "stopped"})

    # -- Middlewares --

    @web.middleware
    async def _request_log_middleware(self, request: web.Request, handler: Handler) -> web.StreamResponse:
        start = time.monotonic()
        status = 500
        try:
            response = await handler(request)
            status = response.status
            return response
        except web.HTTPException as e:
            status = e.status
            raise
        finally:
            if self.request_logging:
                bt.logging.info({"ledger_request": {
                    "method": request.method,
                    "path": request.path,
                    "status": status,
                    "ms": round((time.monotonic() - start) * 1000),
                }})

    @web.middleware
    async def _error_middleware(self, request: web.Request, handler: Handler) -> web.StreamResponse:
        try:
            return await handler(request)
        except web.HTTPMethodNotAllowed:
            # Every unmatched method/path pair is a plain 404.
            raise web.HTTPNotFound()
        except web.HTTPException:
            raise
        except LedgerError as e:
            if e.status >= 500:
                bt.logging.error({"ledger_request": {"path": request.path, "error": str(e)}})
            return web.json_response(e.to_dict(), status=e.status)
        except Exception as e:
            bt.logging.error({"ledger_request": {
                "path": request.path,
                "error": f"{type(e).__name__}: {e}",
            }})
            return web.json_response({"error": "internal_error"}, status=500)

    # -- Mutations --

    async def _read_body(self, request: web.Request, model: type[pydantic.BaseModel]) -> Any:
        raw = await request.read()
        try:
            body = json.loads(raw)
        except (json.JSONDecodeError, UnicodeDecodeError):
            raise web.HTTPBadRequest(text="Invalid JSON Body")
        if not isinstance(body, dict):
            raise ValidationError("Request body should be an object")
        try:
            return model.model_validate(body)
        except pydantic.ValidationError as e:
            raise ValidationError(_pydantic_message(e)) from e

    async def _handle_scores(self, request: web.Request) -> web.Response:
        req = await self._read_body(request, ScoresRequest)
        updated = await self.service.increase(req.participants, req.scores, req.signature)
        return web.json_response(_balances_json(updated))

    async def _handle_paid(self, request: web.Request) -> web.Response:
        req = await self._read_body(request, PaidRequest)
        updated = await self.service.mark_paid(req.participants, req.rewards, req.signature)
        return web.json_response(_balances_json(updated))

    # -- Reads --

    async def _handle_get_all(self, request: web.Request) -> web.Response:
        return web.json_response(_balances_json(await self.service.get_all()))

    async def _handle_get_one(self, request: web.Request) -> web.Response:
        amount = await self.service.get_one(request.match_info["address"])
        return web.json_response(str(amount))

    async def _handle_log(self, request: web.Request) -> web.StreamResponse:
        try:
            after = int(request.query["after"]) if "after" in request.query else None
            limit = int(request.query["limit"]) if "limit" in request.query else None
        except ValueError:
            raise ValidationError("after and limit should be integers")
        if limit is not None and limit <= 0:
            raise ValidationError("limit should be positive")

        if limit is not None:
            entries = []
            async for page in self.service.get_log(after=after, page_size=limit):
                entries = page
                break
            return web.json_response([e.to_json() for e in entries])

        response = web.StreamResponse(headers={"Content-Type": "application/json"})
        response.enable_chunked_encoding()
        await response.prepare(request)
        await response.write(b"[")
        first = True
        try:
            async for page in self.service.get_log(after=after, page_size=LOG_PAGE_SIZE):
                chunk = ",".join(json.dumps(e.to_json()) for e in page)
                if not first:
                    chunk = "," + chunk
                first = False
                await response.write(chunk.encode())
        except Exception as e:
            # Headers are already sent: cut the connection so the client sees a truncated body.
            bt.logging.error({"ledger_request": {
                "path": request.path,
                "error": f"log stream aborted: {type(e).__name__}: {e}",
            }})
            response.force_close()
            if request.transport is not None:
                request.transport.close()
            return response
        await response.write(b"]")
        await response.write_eof()
        return response


__all__ = ["LedgerHTTPServer"]

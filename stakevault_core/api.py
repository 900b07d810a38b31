"""
REST / HTTP API server for the staking vault.

Built on ``aiohttp``.

Endpoints
---------
GET  /health                          Invariant-backed health check
GET  /status                          Vault parameters and totals
GET  /apy                             APY table (ordered durations)
GET  /apy/{duration}                  Percentage for one duration
GET  /account/{address}               Totals and pending reward
GET  /account/{address}/deposits      All deposits with accrued reward
GET  /account/{address}/deposits/{i}  One deposit
GET  /rewards/available               Unreserved reward capacity
GET  /events?since=N                  Published notifications
POST /tx/stake                        Signed: {"op": "stake", "amount", "duration", "nonce"}
POST /tx/unstake                      Signed: {"op": "unstake", "index", "nonce"}
POST /tx/unstake_all                  Signed: {"op": "unstake_all", "nonce"}
POST /admin/...                       Admin lifecycle (X-Admin-Key)

Caller identity
---------------
User endpoints take a signed envelope (see ``stakevault_core.wallet``);
the caller is the address derived from the signing key.  The signed
``op`` must name the endpoint it is posted to, and each account's
integer ``nonce`` must be higher than the last one accepted for it.
Admin endpoints act as the vault admin and require the ``X-Admin-Key``
header.

Security
--------
- API-key authentication on POST endpoints via ``X-API-Key`` header.
  Timing-safe comparison via ``hmac.compare_digest``.
- Per-IP token-bucket rate limiter (configurable RPM).
- CORS middleware (explicit origins only).
- Request body size cap (``max_body_bytes``).

Usage:
    api = APIServer(vault, host="127.0.0.1", port=8080, api_config=cfg.api)
    await api.start()
    ...
    await api.stop()
"""

from __future__ import annotations

import hmac
import json
import logging
import time
from collections import defaultdict
from typing import TYPE_CHECKING, Any, Callable

from aiohttp import web

from stakevault_core.errors import AuthorizationError, VaultError, http_status_for
from stakevault_core.invariants import InvariantChecker
from stakevault_core.logging_config import set_vault_log_level
from stakevault_core.wallet import verify_envelope

if TYPE_CHECKING:
    from stakevault_core.config import APIConfig
    from stakevault_core.vault import StakingVault

logger = logging.getLogger("stakevault_api")


# ═══════════════════════════════════════════════════════════════════
#  Input helpers
# ═══════════════════════════════════════════════════════════════════

def _safe_int(value: Any, name: str = "value", minimum: int | None = 0) -> int:
    """Convert *value* to int; accepts ints and digit strings only."""
    if isinstance(value, bool):
        raise web.HTTPBadRequest(text=f"{name} must be an integer")
    if isinstance(value, int):
        result = value
    elif isinstance(value, str) and value.strip().lstrip("-").isdigit():
        result = int(value.strip())
    else:
        raise web.HTTPBadRequest(text=f"{name} must be an integer")
    if minimum is not None and result < minimum:
        raise web.HTTPBadRequest(text=f"{name} must be >= {minimum}")
    return result


async def _read_json(request: web.Request) -> dict[str, Any]:
    try:
        body = await request.json()
    except Exception as exc:
        raise web.HTTPBadRequest(text="Invalid JSON body") from exc
    if not isinstance(body, dict):
        raise web.HTTPBadRequest(text="JSON object expected")
    return body


def _json_dumps(obj: Any) -> str:
    """JSON serialiser that handles non-standard types."""
    return json.dumps(obj, default=str)


def _error_response(exc: VaultError) -> web.Response:
    return web.json_response(
        {"error": exc.code, "message": str(exc)},
        status=http_status_for(exc),
    )


# ═══════════════════════════════════════════════════════════════════
#  Rate Limiter (per-IP token bucket)
# ═══════════════════════════════════════════════════════════════════

class _TokenBucket:
    """Simple per-IP token-bucket rate limiter."""

    __slots__ = ("_buckets", "_rpm")

    def __init__(self, rpm: int):
        self._rpm = rpm  # 0 = unlimited
        # ip -> (tokens, last_refill_timestamp)
        self._buckets: dict[str, list[float]] = defaultdict(lambda: [float(rpm), time.monotonic()])

    def allow(self, ip: str) -> bool:
        if self._rpm <= 0:
            return True
        bucket = self._buckets[ip]
        now = time.monotonic()
        elapsed = now - bucket[1]
        bucket[0] = min(float(self._rpm), bucket[0] + elapsed * (self._rpm / 60.0))
        bucket[1] = now
        if bucket[0] >= 1.0:
            bucket[0] -= 1.0
            return True
        return False


# ═══════════════════════════════════════════════════════════════════
#  Middleware factories
# ═══════════════════════════════════════════════════════════════════

def _make_rate_limit_middleware(bucket: _TokenBucket):
    """aiohttp middleware that enforces per-IP rate limits."""

    @web.middleware
    async def rate_limit_middleware(request: web.Request, handler):
        ip = request.remote or "unknown"
        if not bucket.allow(ip):
            raise web.HTTPTooManyRequests(
                text="Rate limit exceeded. Try again later.",
                headers={"Retry-After": "5"},
            )
        return await handler(request)

    return rate_limit_middleware


def _make_api_key_middleware(api_key: str):
    """aiohttp middleware that requires an API key on POST requests."""

    @web.middleware
    async def api_key_middleware(request: web.Request, handler):
        if request.method in ("POST", "PUT", "DELETE"):
            key = request.headers.get("X-API-Key", "")
            if not hmac.compare_digest(key, api_key):
                raise web.HTTPUnauthorized(text="Invalid or missing API key")
        return await handler(request)

    return api_key_middleware


def _make_cors_middleware(origins: list[str]):
    """aiohttp middleware that adds CORS headers for listed origins only."""

    allowed = set(origins) if origins else set()
    allowed.discard("*")

    @web.middleware
    async def cors_middleware(request: web.Request, handler):
        origin = request.headers.get("Origin", "")
        if request.method == "OPTIONS":
            resp = web.Response(status=204)
        else:
            resp = await handler(request)

        if origin in allowed:
            resp.headers["Access-Control-Allow-Origin"] = origin
            resp.headers["Access-Control-Allow-Methods"] = "GET, POST, OPTIONS"
            resp.headers["Access-Control-Allow-Headers"] = "Content-Type, X-API-Key, X-Admin-Key"
            resp.headers["Access-Control-Max-Age"] = "3600"
        return resp

    return cors_middleware


class APIServer:
    """Thin aiohttp wrapper around a StakingVault."""

    def __init__(
        self,
        vault: StakingVault,
        host: str = "127.0.0.1",
        port: int = 8080,
        *,
        api_config: APIConfig | None = None,
    ):
        self.vault = vault
        self.host = host
        self.port = port
        self._api_config = api_config
        self._app: web.Application | None = None
        self._runner: web.AppRunner | None = None
        # highest accepted nonce per account
        self._last_nonce: dict[str, int] = {}
        self._checker = InvariantChecker()

    # ── lifecycle ────────────────────────────────────────────────

    def build_app(self) -> web.Application:
        middlewares: list = []
        max_body = 65_536

        if self._api_config is not None:
            cfg = self._api_config
            max_body = cfg.max_body_bytes
            if cfg.rate_limit_rpm > 0:
                middlewares.append(_make_rate_limit_middleware(_TokenBucket(cfg.rate_limit_rpm)))
            if cfg.cors_origins:
                middlewares.append(_make_cors_middleware(cfg.cors_origins))
            if cfg.api_key:
                middlewares.append(_make_api_key_middleware(cfg.api_key))

        app = web.Application(middlewares=middlewares, client_max_size=max_body)
        self._register_routes(app)
        self._app = app
        return app

    async def start(self) -> None:
        app = self.build_app()
        self._runner = web.AppRunner(app)
        await self._runner.setup()
        site = web.TCPSite(self._runner, self.host, self.port)
        await site.start()
        logger.info(f"API listening on http://{self.host}:{self.port}")

    async def stop(self) -> None:
        if self._runner:
            await self._runner.cleanup()

    # ── routes ───────────────────────────────────────────────────

    def _register_routes(self, app: web.Application) -> None:
        app.router.add_get("/health", self._health)
        app.router.add_get("/status", self._status)
        app.router.add_get("/apy", self._apy_table)
        app.router.add_get("/apy/{duration}", self._apy_lookup)
        app.router.add_get("/account/{address}", self._account_info)
        app.router.add_get("/account/{address}/deposits", self._account_deposits)
        app.router.add_get("/account/{address}/deposits/{index}", self._account_deposit)
        app.router.add_get("/rewards/available", self._available_rewards)
        app.router.add_get("/events", self._events)
        # Signed depositor operations
        app.router.add_post("/tx/stake", self._submit_stake)
        app.router.add_post("/tx/unstake", self._submit_unstake)
        app.router.add_post("/tx/unstake_all", self._submit_unstake_all)
        # Admin
        app.router.add_post("/admin/reward/start", self._admin_start_reward)
        app.router.add_post("/admin/reward/stop", self._admin_stop_reward)
        app.router.add_post("/admin/apy", self._admin_set_apy)
        app.router.add_post("/admin/apy/delete", self._admin_delete_apy)
        app.router.add_post("/admin/penalty", self._admin_penalty)
        app.router.add_post("/admin/fee", self._admin_fee)
        app.router.add_post("/admin/emergency_withdraw", self._admin_emergency_withdraw)
        app.router.add_post("/admin/reset", self._admin_reset)
        app.router.add_post("/admin/unstake", self._admin_unstake)
        app.router.add_post("/admin/unstake_all", self._admin_unstake_all)
        app.router.add_post("/admin/log_level", self._admin_log_level)

    # ── read surface ─────────────────────────────────────────────

    async def _health(self, _request: web.Request) -> web.Response:
        ok, msg = self._checker.verify(self.vault)
        return web.json_response({
            "ok": ok,
            "paused": self.vault.paused,
            "rewards_active": self.vault.started_timestamp != 0,
            "decoupled": self.vault.decoupled,
            "invariants": "ok" if ok else msg,
        }, status=200 if ok else 503)

    async def _status(self, _request: web.Request) -> web.Response:
        return web.json_response(self.vault.status(), dumps=_json_dumps)

    async def _apy_table(self, _request: web.Request) -> web.Response:
        return web.json_response({
            "count": self.vault.apy_option_count(),
            "durations": self.vault.apy_durations(),
            "options": [o.to_dict() for o in self.vault.apy_table()],
        })

    async def _apy_lookup(self, request: web.Request) -> web.Response:
        duration = _safe_int(request.match_info["duration"], "duration")
        return web.json_response({
            "duration": duration,
            "percentage": self.vault.apy_percentage(duration),
        })

    async def _account_info(self, request: web.Request) -> web.Response:
        address = request.match_info["address"].lower()
        return web.json_response({
            "address": address,
            "total_staked": self.vault.total_staked_of(address),
            "deposit_count": self.vault.deposit_count(address),
            "pending_reward": self.vault.pending_reward(address),
        })

    async def _account_deposits(self, request: web.Request) -> web.Response:
        address = request.match_info["address"].lower()
        return web.json_response({
            "address": address,
            "deposits": [v.to_dict() for v in self.vault.deposits_of(address)],
        })

    async def _account_deposit(self, request: web.Request) -> web.Response:
        address = request.match_info["address"].lower()
        index = _safe_int(request.match_info["index"], "index")
        try:
            view = self.vault.deposit_of(address, index)
        except VaultError as exc:
            return _error_response(exc)
        return web.json_response(view.to_dict())

    async def _available_rewards(self, _request: web.Request) -> web.Response:
        return web.json_response({"available_rewards": self.vault.available_rewards()})

    async def _events(self, request: web.Request) -> web.Response:
        since = _safe_int(request.query.get("since", "0"), "since")
        return web.json_response({
            "events": [e.to_dict() for e in self.vault.events.since(since)],
        })

    # ── signed depositor operations ──────────────────────────────

    async def _verified(self, request: web.Request, expected_op: str) -> tuple[str, dict[str, Any]]:
        body = await _read_json(request)
        caller, payload = verify_envelope(body)
        if payload.get("op") != expected_op:
            raise AuthorizationError(
                f"envelope signed for {payload.get('op')!r}, not {expected_op!r}",
                code="WrongOperation",
            )
        if payload.get("nonce") is None:
            raise web.HTTPBadRequest(text="nonce required")
        nonce = _safe_int(payload["nonce"], "nonce", minimum=1)
        if nonce <= self._last_nonce.get(caller, 0):
            raise web.HTTPConflict(text="nonce must increase")
        self._last_nonce[caller] = nonce
        return caller, payload

    async def _run(
        self, request: web.Request, name: str, op: Callable[[str, dict], Any],
    ) -> web.Response:
        try:
            caller, payload = await self._verified(request, name)
            result = op(caller, payload)
        except VaultError as exc:
            return _error_response(exc)
        return web.json_response(result, dumps=_json_dumps)

    async def _submit_stake(self, request: web.Request) -> web.Response:
        """
        POST /tx/stake
        Payload: {"op": "stake", "account": "0x…", "amount": 1000, "duration": 10, "nonce": 1}

        The vault pulls ``amount`` from the caller via the token allowance.
        """
        def op(caller: str, payload: dict) -> dict:
            amount = _safe_int(payload.get("amount"), "amount", minimum=1)
            duration = _safe_int(payload.get("duration"), "duration")
            index = self.vault.stake(caller, amount, duration)
            return {
                "status": "staked",
                "index": index,
                "deposit": self.vault.deposit_of(caller, index).to_dict(),
            }
        return await self._run(request, "stake", op)

    async def _submit_unstake(self, request: web.Request) -> web.Response:
        """POST /tx/unstake — settle one deposit by index."""
        def op(caller: str, payload: dict) -> dict:
            index = _safe_int(payload.get("index"), "index")
            receipt = self.vault.unstake_by_index(caller, index)
            return {"status": "unstaked", **receipt.to_dict()}
        return await self._run(request, "unstake", op)

    async def _submit_unstake_all(self, request: web.Request) -> web.Response:
        """POST /tx/unstake_all — settle every deposit in one payout."""
        def op(caller: str, _payload: dict) -> dict:
            receipt = self.vault.unstake_all_deposits(caller)
            return {"status": "unstaked", **receipt.to_dict()}
        return await self._run(request, "unstake_all", op)

    # ── admin ────────────────────────────────────────────────────

    def _check_admin_key(self, request: web.Request) -> None:
        """Validate admin API key. Raises HTTPForbidden if invalid."""
        admin_key = ""
        if self._api_config is not None:
            admin_key = getattr(self._api_config, "admin_key", "") or ""
        if not admin_key:
            raise web.HTTPForbidden(text="Admin endpoints not configured")
        provided = request.headers.get("X-Admin-Key", "")
        if not hmac.compare_digest(provided, admin_key):
            raise web.HTTPForbidden(text="Invalid admin key")

    async def _admin_run(self, request: web.Request, op: Callable[[dict], Any]) -> web.Response:
        self._check_admin_key(request)
        body = await _read_json(request) if request.can_read_body else {}
        try:
            result = op(body)
        except VaultError as exc:
            return _error_response(exc)
        return web.json_response(result or {"status": "ok"}, dumps=_json_dumps)

    async def _admin_start_reward(self, request: web.Request) -> web.Response:
        admin = self.vault.admin
        return await self._admin_run(
            request,
            lambda _b: {"status": "started", "started_timestamp": self.vault.start_reward(admin)},
        )

    async def _admin_stop_reward(self, request: web.Request) -> web.Response:
        def op(_body: dict) -> dict:
            self.vault.stop_reward(self.vault.admin)
            return {"status": "stopped"}
        return await self._admin_run(request, op)

    async def _admin_set_apy(self, request: web.Request) -> web.Response:
        """POST /admin/apy — {"percentage": 50, "duration": 10}"""
        def op(body: dict) -> dict:
            percentage = _safe_int(body.get("percentage"), "percentage")
            duration = _safe_int(body.get("duration"), "duration")
            self.vault.add_or_update_apy(self.vault.admin, percentage, duration)
            return {"status": "ok", "durations": self.vault.apy_durations()}
        return await self._admin_run(request, op)

    async def _admin_delete_apy(self, request: web.Request) -> web.Response:
        def op(body: dict) -> dict:
            duration = _safe_int(body.get("duration"), "duration")
            self.vault.delete_apy(self.vault.admin, duration)
            return {"status": "ok", "durations": self.vault.apy_durations()}
        return await self._admin_run(request, op)

    async def _admin_penalty(self, request: web.Request) -> web.Response:
        def op(body: dict) -> dict:
            pct = _safe_int(body.get("percentage"), "percentage")
            self.vault.update_exit_penalty(self.vault.admin, pct)
            return {"status": "ok", "exit_penalty_percentage": pct}
        return await self._admin_run(request, op)

    async def _admin_fee(self, request: web.Request) -> web.Response:
        def op(body: dict) -> dict:
            pct = _safe_int(body.get("percentage"), "percentage")
            self.vault.update_fee(self.vault.admin, pct)
            return {"status": "ok", "withdraw_fee_percentage": pct}
        return await self._admin_run(request, op)

    async def _admin_emergency_withdraw(self, request: web.Request) -> web.Response:
        def op(body: dict) -> dict:
            amount = _safe_int(body.get("amount"), "amount", minimum=1)
            self.vault.withdraw_emergency_reward(self.vault.admin, amount)
            return {"status": "ok", "amount": amount}
        return await self._admin_run(request, op)

    async def _admin_reset(self, request: web.Request) -> web.Response:
        logger.warning("Admin-initiated vault reset requested")
        return await self._admin_run(
            request,
            lambda _b: {"status": "reset", "swept": self.vault.reset(self.vault.admin)},
        )

    async def _admin_unstake(self, request: web.Request) -> web.Response:
        """POST /admin/unstake — {"account": "0x…", "index": 0}"""
        def op(body: dict) -> dict:
            account = str(body.get("account", "")).lower()
            if not account:
                raise web.HTTPBadRequest(text="account required")
            index = _safe_int(body.get("index"), "index")
            receipt = self.vault.admin_unstake_by_index(self.vault.admin, account, index)
            return {"status": "unstaked", **receipt.to_dict()}
        return await self._admin_run(request, op)

    async def _admin_unstake_all(self, request: web.Request) -> web.Response:
        def op(body: dict) -> dict:
            account = str(body.get("account", "")).lower()
            if not account:
                raise web.HTTPBadRequest(text="account required")
            receipt = self.vault.admin_unstake_all_deposits(self.vault.admin, account)
            return {"status": "unstaked", **receipt.to_dict()}
        return await self._admin_run(request, op)

    async def _admin_log_level(self, request: web.Request) -> web.Response:
        """POST /admin/log_level — change vault logging level at runtime."""
        def op(body: dict) -> dict:
            level = str(body.get("level", "INFO")).upper()
            valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
            if level not in valid_levels:
                raise web.HTTPBadRequest(text=f"Invalid level. Use one of: {sorted(valid_levels)}")
            set_vault_log_level(level)
            return {"status": "ok", "level": level}
        return await self._admin_run(request, op)

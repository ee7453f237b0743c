from __future__ import annotations

import json
import logging
from contextlib import asynccontextmanager
from typing import Optional

import httpx
from fastapi import APIRouter, BackgroundTasks, Depends, FastAPI, Form, HTTPException, Request, status
from fastapi.responses import HTMLResponse, JSONResponse, PlainTextResponse, Response
from pydantic import ValidationError

from backend.relay.auth import ADMIN_ROLE, OPERATOR_ROLE, AuthContext, require_roles
from backend.relay.errors import AuthError, RouteNotFoundError, StorageUnavailableError
from backend.relay.kvstore import InMemoryKeyValueStore, KeyValueStore
from backend.relay.models import (
    AdminSummaryResponse,
    RouteRecord,
    RouteStatsResponse,
    TelegramUpdate,
    VerifySubmitResponse,
)
from backend.relay.observability import MetricsRegistry, configure_logging, observe_request
from backend.relay.pages import render_challenge_page
from backend.relay.persistence import SqlKeyValueStore
from backend.relay.services import texts
from backend.relay.services.background import run_detached
from backend.relay.services.blocklist import BlockList
from backend.relay.services.correlation import CorrelationTable
from backend.relay.services.dispatcher import PLATFORM_SCOPE, Dispatcher
from backend.relay.services.fraud import FraudChecker
from backend.relay.services.keys import PLATFORM_TOTAL_ROUTES, route_messages_key, route_users_key
from backend.relay.services.platform import Counters, PlatformConfigStore
from backend.relay.services.registry import RouteRegistry
from backend.relay.services.telegram import TelegramGateway
from backend.relay.services.turnstile import (
    TurnstileServiceError,
    TurnstileVerificationError,
    verify_turnstile_token,
)
from backend.relay.services.verification import VerificationGate
from backend.relay.services.webhooks import verify_secret_header
from backend.relay.settings import Settings, load_settings

logger = logging.getLogger("pm_relay")


def build_kv_store(settings: Settings) -> KeyValueStore:
    if settings.kv_backend == "memory":
        return InMemoryKeyValueStore()
    return SqlKeyValueStore(settings.database_url)


def create_app(
    *,
    kv: Optional[KeyValueStore] = None,
    http_client: Optional[httpx.AsyncClient] = None,
) -> FastAPI:
    configure_logging()
    settings = load_settings()
    owns_http = http_client is None
    http = http_client or httpx.AsyncClient(timeout=settings.upstream_timeout_seconds)

    @asynccontextmanager
    async def lifespan(_: FastAPI):
        yield
        if owns_http:
            await http.aclose()

    app = FastAPI(title="PM Relay Platform", version="0.1.0", lifespan=lifespan)
    store = kv or build_kv_store(settings)
    telegram = TelegramGateway(http, settings.telegram_api_base)
    platform = PlatformConfigStore(store)

    app.state.settings = settings
    app.state.kv = store
    app.state.http = http
    app.state.metrics = MetricsRegistry()
    app.state.dispatcher = Dispatcher(
        kv=store,
        telegram=telegram,
        registry=RouteRegistry(store, telegram),
        gate=VerificationGate(store, platform),
        blocklist=BlockList(store),
        correlation=CorrelationTable(store),
        platform=platform,
        counters=Counters(store),
        fraud=FraudChecker(http, settings.fraud_db_url),
        platform_token=settings.platform_bot_token,
        admin_uid=settings.admin_uid,
        dedupe_enabled=settings.relay_dedupe_enabled,
    )

    @app.middleware("http")
    async def observability_middleware(request: Request, call_next):
        return await observe_request(request, call_next, metrics=app.state.metrics)

    app.include_router(build_router())
    return app


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_dispatcher(request: Request) -> Dispatcher:
    return request.app.state.dispatcher


def get_metrics(request: Request) -> MetricsRegistry:
    return request.app.state.metrics


def public_origin(request: Request) -> str:
    configured = get_settings(request).public_base_url
    if configured:
        return configured
    return str(request.base_url).rstrip("/")


async def _parse_update(request: Request) -> TelegramUpdate:
    raw_body = await request.body()
    try:
        return TelegramUpdate.model_validate(json.loads(raw_body.decode("utf-8")))
    except (json.JSONDecodeError, UnicodeDecodeError, ValidationError) as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="invalid update payload",
        ) from exc


async def _load_route(dispatcher: Dispatcher, route_id: str) -> RouteRecord:
    try:
        return await dispatcher.registry.lookup(route_id)
    except RouteNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="route not found") from exc
    except StorageUnavailableError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)
        ) from exc


def build_router() -> APIRouter:
    router = APIRouter()

    @router.get("/")
    def index() -> PlainTextResponse:
        return PlainTextResponse("PM relay platform running")

    @router.get("/health")
    def health() -> dict[str, str]:
        return {"status": "ok"}

    @router.get("/health/ready")
    async def readiness(request: Request) -> dict[str, str]:
        if not await request.app.state.kv.ping():
            raise HTTPException(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                detail="state store unavailable",
            )
        return {"status": "ready"}

    @router.get("/metrics", response_class=PlainTextResponse)
    def metrics(request: Request) -> Response:
        registry = get_metrics(request)
        return PlainTextResponse(registry.to_prometheus())

    @router.post("/endpoint", response_class=PlainTextResponse)
    async def platform_webhook(request: Request, background: BackgroundTasks) -> PlainTextResponse:
        settings = get_settings(request)
        dispatcher = get_dispatcher(request)
        try:
            verify_secret_header(request.headers, settings.platform_webhook_secret)
        except AuthError as exc:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc)) from exc

        update = await _parse_update(request)
        try:
            if not await dispatcher.already_handled(PLATFORM_SCOPE, update):
                await dispatcher.handle_platform_update(
                    update, origin=public_origin(request), background=background
                )
                await dispatcher.mark_handled(PLATFORM_SCOPE, update)
        except StorageUnavailableError as exc:
            raise HTTPException(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)
            ) from exc
        return PlainTextResponse("Ok")

    @router.post("/entry/{route_id}", response_class=PlainTextResponse)
    async def route_webhook(
        route_id: str,
        request: Request,
        background: BackgroundTasks,
    ) -> PlainTextResponse:
        dispatcher = get_dispatcher(request)
        route = await _load_route(dispatcher, route_id)
        try:
            verify_secret_header(request.headers, route.secret)
        except AuthError as exc:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc)) from exc

        update = await _parse_update(request)
        try:
            if not await dispatcher.already_handled(route_id, update):
                await dispatcher.handle_route_update(
                    route, update, origin=public_origin(request), background=background
                )
                await dispatcher.mark_handled(route_id, update)
        except StorageUnavailableError as exc:
            raise HTTPException(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)
            ) from exc
        return PlainTextResponse("Ok")

    @router.get("/registerWebhook")
    async def register_platform_webhook(
        request: Request,
        _: AuthContext = Depends(require_roles(ADMIN_ROLE)),
    ) -> dict:
        settings = get_settings(request)
        if not settings.platform_bot_token or not settings.platform_webhook_secret:
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail="platform bot token or webhook secret is not configured",
            )
        client = get_dispatcher(request).telegram.bot(settings.platform_bot_token)
        result = await client.set_webhook(
            f"{public_origin(request)}/endpoint",
            settings.platform_webhook_secret,
        )
        return {
            "ok": result.ok,
            "result": result.result,
            "description": result.description,
            "error_code": result.error_code,
        }

    @router.get("/verify", response_class=HTMLResponse)
    def verify_page(
        request: Request,
        uid: Optional[str] = None,
        name: str = "User",
        user: str = "",
    ) -> HTMLResponse:
        if not uid:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="missing uid")
        settings = get_settings(request)
        return HTMLResponse(
            render_challenge_page(name=name, user=user, site_key=settings.turnstile_site_key)
        )

    @router.post("/verify_submit", response_model=VerifySubmitResponse)
    async def verify_submit(
        request: Request,
        background: BackgroundTasks,
        token: str = Form(default="", alias="cf-turnstile-response"),
        uid: str = Form(default=""),
        route_id: str = Form(default="", alias="routeId"),
    ) -> Response:
        settings = get_settings(request)
        dispatcher = get_dispatcher(request)
        if not settings.turnstile_secret_key:
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail="turnstile secret is not configured",
            )
        try:
            visitor_id = int(uid)
        except ValueError:
            visitor_id = None
        if not token or visitor_id is None or not route_id:
            return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"success": False})

        try:
            route = await dispatcher.registry.lookup(route_id)
        except RouteNotFoundError:
            return JSONResponse(status_code=status.HTTP_404_NOT_FOUND, content={"success": False})
        except StorageUnavailableError:
            return JSONResponse(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE, content={"success": False}
            )

        client_ip = request.headers.get("cf-connecting-ip") or (
            request.client.host if request.client else None
        )
        try:
            await verify_turnstile_token(
                http=request.app.state.http,
                token=token,
                secret=settings.turnstile_secret_key,
                remote_ip=client_ip,
            )
        except TurnstileVerificationError:
            return JSONResponse(content={"success": False})
        except TurnstileServiceError as exc:
            logger.warning("turnstile_unavailable error=%s", exc)
            return JSONResponse(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE, content={"success": False}
            )

        try:
            ttl = await dispatcher.gate.effective_ttl(route.route_id)
            await dispatcher.gate.mark_verified(route.route_id, visitor_id, ttl)
        except StorageUnavailableError as exc:
            logger.warning("verification_not_stored route_id=%s error=%s", route.route_id, exc)
            return JSONResponse(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE, content={"success": False}
            )
        logger.info(
            "visitor_verified route_id=%s visitor=%s ttl=%s", route.route_id, visitor_id, ttl
        )
        route_client = dispatcher.telegram.bot(route.token)
        run_detached(
            background,
            "verified_notice",
            route_client.send_message,
            visitor_id,
            texts.VERIFIED_NOTICE,
            parse_mode="Markdown",
        )
        return JSONResponse(content={"success": True})

    @router.get("/admin/summary", response_model=AdminSummaryResponse)
    async def admin_summary(
        request: Request,
        _: AuthContext = Depends(require_roles(ADMIN_ROLE, OPERATOR_ROLE)),
    ) -> AdminSummaryResponse:
        dispatcher = get_dispatcher(request)
        config = await dispatcher.platform.load()
        return AdminSummaryResponse(
            enable_new_users=config.enable_new_users,
            verify_ttl_seconds=config.verify_ttl,
            total_routes=await dispatcher.counters.get(PLATFORM_TOTAL_ROUTES),
        )

    @router.get("/admin/routes/{route_id}/stats", response_model=RouteStatsResponse)
    async def route_stats(
        route_id: str,
        request: Request,
        _: AuthContext = Depends(require_roles(ADMIN_ROLE, OPERATOR_ROLE)),
    ) -> RouteStatsResponse:
        dispatcher = get_dispatcher(request)
        route = await _load_route(dispatcher, route_id)
        return RouteStatsResponse(
            route_id=route.route_id,
            bot_username=route.bot_username,
            owner_id=route.owner_id,
            enable_verify=route.enable_verify,
            users_seen=await dispatcher.counters.get(route_users_key(route_id)),
            messages_relayed=await dispatcher.counters.get(route_messages_key(route_id)),
        )

    return router


app = create_app()

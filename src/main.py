from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import logging

from src.core.clock import SystemClock
from src.core.config import Settings, settings as default_settings
from src.core.database import check_database_health, create_engine, create_session_factory
from src.core.exceptions import AppException
from src.core.redis import check_redis_health, close_redis_client, create_redis_client
from src.core.websocket import ConnectionManager
from src.domains.incidents.lifecycle import IncidentLifecycle
from src.domains.incidents.orchestrator import DispatchOrchestrator
from src.domains.incidents.repository import InMemoryIncidentRepository
from src.domains.incidents.router import responders_router, router as incidents_router
from src.domains.incidents.service import IncidentService
from src.domains.notifications import (
    NotificationDispatcher,
    NotificationFanout,
    PushGatewayChannel,
    WebSocketChannel,
)
from src.domains.responders import InMemoryCandidateRegistry, PostgisCandidateRegistry
from src.domains.tracking import LocationCache
from src.domains.websocket.router import router as websocket_router


logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def build_services(app: FastAPI, settings: Settings, registry=None, redis=None, clock=None) -> IncidentService:
    """组装服务对象并挂到 app.state"""
    clock = clock or SystemClock()
    manager = ConnectionManager()

    if registry is None:
        if settings.database_url:
            engine = create_engine(settings.database_url, settings.database_pool_size)
            app.state.db_engine = engine
            registry = PostgisCandidateRegistry(create_session_factory(engine))
        else:
            logger.info("未配置database_url，使用内存候选注册表")
            registry = InMemoryCandidateRegistry()

    channels = [WebSocketChannel(manager)]
    if settings.push_gateway_url:
        channels.append(PushGatewayChannel(settings.push_gateway_url, "push", settings.push_gateway_timeout))
        channels.append(PushGatewayChannel(settings.push_gateway_url, "email", settings.push_gateway_timeout))
    dispatcher = NotificationDispatcher(channels, realtime=manager)

    repository = InMemoryIncidentRepository()
    lifecycle = IncidentLifecycle(clock)
    fanout = NotificationFanout(repository, lifecycle, registry, dispatcher, clock, settings.offer_ttl_minutes)
    orchestrator = DispatchOrchestrator(repository, lifecycle, registry, fanout, dispatcher, clock, settings)
    service = IncidentService(
        repository,
        lifecycle,
        orchestrator,
        fanout,
        dispatcher,
        registry,
        LocationCache(redis, clock, settings.location_ttl_seconds),
    )

    app.state.settings = settings
    app.state.clock = clock
    app.state.connection_manager = manager
    app.state.registry = registry
    app.state.redis = redis
    app.state.incident_service = service
    return service


@asynccontextmanager
async def lifespan(app: FastAPI):
    """启动时创建Redis/数据库/WebSocket等服务句柄，退出时关闭"""
    redis = create_redis_client(default_settings.redis_url)
    build_services(app, default_settings, redis=redis)
    logger.info("急救调度服务已启动")
    yield
    await app.state.connection_manager.close_all()
    await close_redis_client(redis)
    engine = getattr(app.state, "db_engine", None)
    if engine is not None:
        await engine.dispose()
    logger.info("急救调度服务已停止")


def register_handlers(app: FastAPI, settings: Settings) -> None:

    @app.exception_handler(AppException)
    async def app_exception_handler(request: Request, exc: AppException):
        return JSONResponse(
            status_code=exc.status_code,
            content=exc.detail,
        )

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception):
        logger.exception(f"Unhandled exception: {exc}")
        return JSONResponse(
            status_code=500,
            content={
                "error_code": "INTERNAL_ERROR",
                "message": "Internal server error",
                "details": str(exc) if settings.debug else None,
            },
        )


def create_app(settings: Settings = default_settings, lifespan_handler=lifespan) -> FastAPI:
    app = FastAPI(
        title="Emergency Dispatch API",
        description="急救调度引擎 API",
        version="1.0.0",
        docs_url=f"{settings.api_prefix}/docs",
        redoc_url=f"{settings.api_prefix}/redoc",
        openapi_url=f"{settings.api_prefix}/openapi.json",
        lifespan=lifespan_handler,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_handlers(app, settings)

    app.include_router(incidents_router, prefix=settings.api_prefix)
    app.include_router(responders_router, prefix=settings.api_prefix)
    app.include_router(websocket_router, prefix=settings.api_prefix)

    @app.get("/health")
    async def health_check(request: Request):
        redis = getattr(request.app.state, "redis", None)
        engine = getattr(request.app.state, "db_engine", None)
        return {
            "status": "healthy",
            "version": "1.0.0",
            "redis": await check_redis_health(redis) if redis is not None else None,
            "database": await check_database_health(engine) if engine is not None else None,
        }

    @app.get("/")
    async def root():
        return {
            "name": "Emergency Dispatch API",
            "version": "1.0.0",
            "docs": f"{settings.api_prefix}/docs",
        }

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("src.main:app", host="0.0.0.0", port=8000, reload=default_settings.debug)

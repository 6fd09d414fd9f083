import asyncio
from contextlib import asynccontextmanager
from typing import List

from fastapi import FastAPI, HTTPException, Request, WebSocket
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response

from hostwatch.shared.core.config import AggregatorConfig, CollectorConfig, Config
from hostwatch.shared.core.enums import CloseCode
from hostwatch.shared.core.exceptions import ConfigurationError, ServiceError
from hostwatch.shared.core.models import MetricsSnapshot
from hostwatch.shared.utils.logger import LoggerSetup
from hostwatch.services.agent.src.collector import MetricsCollector
from hostwatch.services.agent.src.publisher import LocalPublisher
from hostwatch.services.agent.src.samplers import SamplerSet
from .service import AggregationService
from .sessions import ViewerSession

logger = LoggerSetup.setup(__name__)


def _get_service(request: Request) -> AggregationService:
    service: AggregationService | None = getattr(request.app.state, "service", None)
    if not service:
        raise HTTPException(status_code=503, detail="Service not initialized")
    return service


async def _receive_loop(service: AggregationService, session: ViewerSession, websocket: WebSocket) -> None:
    """Read viewer frames until the client disconnects"""
    while True:
        message = await websocket.receive()
        if message["type"] == "websocket.disconnect":
            await session.close(message.get("code", CloseCode.NORMAL), "client disconnected")
            return
        text = message.get("text")
        if text is None:
            await session.close(CloseCode.INVALID_PAYLOAD, "binary frame")
            return
        await service.handle_inbound(session, text)


def create_app(config: AggregatorConfig | None = None,
               collector_config: CollectorConfig | None = None) -> FastAPI:
    """
    Build the aggregation server application.

    Args:
        config: Server configuration; read from the environment when omitted
        collector_config: Embedded collector configuration, used only when
            `config.embedded_collector` is set
    """
    if config is None or (config.embedded_collector and collector_config is None):
        env_config = Config()
        config = config or env_config.aggregator
        collector_config = collector_config or env_config.collector

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Service lifecycle manager"""
        service = AggregationService(config)
        collector: MetricsCollector | None = None

        try:
            await service.start()
            app.state.service = service

            if config.embedded_collector:
                collector = MetricsCollector(
                    samplers=SamplerSet.create(collector_config),
                    publisher=LocalPublisher(service.ingest),
                    config=collector_config
                )
                await collector.start()
                logger.info("Embedded collector started")

            yield  # Service is running

        except Exception as e:
            logger.error(f"Service initialization failed: {e}")
            raise

        finally:
            # Cleanup
            if collector:
                await collector.stop()
            await service.stop()
            app.state.service = None

    app = FastAPI(
        title="Hostwatch Aggregator",
        description="Receives host metrics snapshots and streams them to viewers",
        version="1.0.0",
        lifespan=lifespan
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.cors_origins,
        # Credentials only for an explicit origin list, never the wildcard
        allow_credentials="*" not in config.cors_origins,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.post("/api/metrics")
    async def ingest_metrics(snapshot: MetricsSnapshot, request: Request):
        """Ingest one snapshot from an agent"""
        await _get_service(request).ingest(snapshot)
        return {"success": True}

    @app.get("/api/metrics", response_model=MetricsSnapshot)
    async def get_latest_metrics(request: Request):
        """Latest snapshot, all zeros before the first one arrives"""
        return _get_service(request).latest_snapshot()

    @app.get("/api/history", response_model=List[MetricsSnapshot])
    async def get_history(request: Request):
        """Recent snapshots, oldest first"""
        return _get_service(request).history()

    @app.get("/health")
    async def health_check(request: Request):
        """Health check endpoint"""
        service = _get_service(request)
        return {
            "status": "healthy",
            "service_status": service.status
        }

    @app.get("/metrics")
    async def get_metrics(request: Request):
        """Get Prometheus metrics"""
        service = _get_service(request)
        try:
            metrics = await service.get_prometheus_metrics()
            return Response(
                content=metrics,
                media_type="text/plain"
            )
        except Exception as e:
            raise HTTPException(status_code=500, detail=f"Failed to collect metrics: {str(e)}")

    @app.get("/status")
    async def get_status(request: Request):
        """Get detailed service status"""
        service = _get_service(request)
        return {
            "status": service.get_service_status(),
            "sessions": service.get_sessions()
        }

    @app.websocket("/ws")
    async def stream(websocket: WebSocket):
        """Viewer stream: one history message, then every broadcast"""
        service: AggregationService | None = getattr(websocket.app.state, "service", None)
        if not service:
            await websocket.close(code=CloseCode.INTERNAL_ERROR)
            return

        await websocket.accept()
        try:
            session = service.open_session(websocket)
        except ServiceError as e:
            logger.warning(f"Rejecting viewer: {e}")
            await websocket.close(code=CloseCode.GOING_AWAY)
            return
        receiver = asyncio.create_task(_receive_loop(service, session, websocket))
        closed = asyncio.create_task(session.wait_closed())
        try:
            await asyncio.wait({receiver, closed}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for task in (receiver, closed):
                task.cancel()
            await asyncio.gather(receiver, closed, return_exceptions=True)
            await session.close(CloseCode.NORMAL, "stream ended")

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        """Global exception handler"""
        logger.error(f"Unhandled error: {exc}")
        return JSONResponse(
            status_code=500,
            content={"detail": "Internal server error"}
        )

    return app


def main() -> None:
    import uvicorn

    try:
        config = Config()
    except ConfigurationError as e:
        raise SystemExit(f"Configuration error: {e}")

    LoggerSetup.configure(
        level=config.logging.level,
        logs_dir=config.logging.dir_path,
        max_bytes=config.logging.max_size,
        backup_count=config.logging.backup_count
    )
    uvicorn.run(
        create_app(config.aggregator, config.collector),
        host=config.aggregator.host,
        port=config.aggregator.port
    )


if __name__ == "__main__":
    main()

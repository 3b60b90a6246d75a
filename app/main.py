import logging
from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from app.api import stream, telemetry
from app.config.settings import Settings, get_settings
from app.core.mqtt_subscriber import MqttSubscriber
from app.core.redis_subscriber import RedisSubscriber
from app.services.query_service import QueryEngine
from app.services.telemetry_service import TelemetryHub

logging.basicConfig(level=get_settings().log_level)
logger = logging.getLogger(__name__)


async def start_ingest(app: FastAPI):
    settings: Settings = app.state.settings
    hub: TelemetryHub = app.state.hub
    subscriber = None

    if settings.ingest_transport == "mqtt":
        subscriber = MqttSubscriber(settings, hub)
        subscriber.start()
    elif settings.ingest_transport == "redis":
        subscriber = RedisSubscriber(settings, hub)
        await subscriber.start()
    else:
        logger.info("Ingest transport disabled")

    app.state.subscriber = subscriber


async def stop_ingest(app: FastAPI):
    subscriber = app.state.subscriber
    if isinstance(subscriber, RedisSubscriber):
        await subscriber.stop()
    elif subscriber is not None:
        subscriber.stop()
    app.state.subscriber = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    await start_ingest(app)
    logger.info("SensorBridge started")
    yield
    await stop_ingest(app)
    logger.info("SensorBridge stopped")


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or get_settings()

    app = FastAPI(title="SensorBridge", version="1.0.0", lifespan=lifespan)

    hub = TelemetryHub(settings)
    app.state.settings = settings
    app.state.hub = hub
    app.state.query_engine = QueryEngine(hub)
    app.state.subscriber = None

    app.include_router(telemetry.router, prefix="/api", tags=["telemetry"])
    app.include_router(stream.router, tags=["stream"])

    @app.get("/health")
    async def health_check():
        return {
            "status": "healthy",
            "service": "sensorbridge",
            "transport": settings.ingest_transport,
            **hub.get_stats(),
        }

    @app.exception_handler(ValueError)
    async def value_error_handler(request: Request, exc: ValueError):
        return JSONResponse(status_code=400, content={"error": str(exc)})

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        problems = [
            f"{'.'.join(str(p) for p in err['loc'][1:]) or 'request'}: {err['msg']}"
            for err in exc.errors()
        ]
        return JSONResponse(status_code=400, content={"error": "; ".join(problems)})

    return app


app = create_app()


def run():
    settings = get_settings()
    logger.info(f"Web server running on port {settings.port}")
    logger.info(
        f"MQTT configuration: url={settings.mqtt_url} topic={settings.mqtt_topic} "
        f"username={'provided' if settings.mqtt_username else 'none'}"
    )
    uvicorn.run(app, host=settings.host, port=settings.port)


if __name__ == "__main__":
    run()

from starlette.requests import HTTPConnection

from app.services.query_service import QueryEngine
from app.services.telemetry_service import TelemetryHub


def get_hub(connection: HTTPConnection) -> TelemetryHub:
    return connection.app.state.hub


def get_query_engine(connection: HTTPConnection) -> QueryEngine:
    return connection.app.state.query_engine

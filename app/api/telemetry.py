from typing import Optional

from fastapi import APIRouter, Depends, Query

from app.api.dependencies import get_query_engine
from app.models.telemetry import ApiResponse, ErrorResponse
from app.services.query_service import QueryEngine

router = APIRouter(responses={400: {"model": ErrorResponse}})


@router.get("/latest", response_model=ApiResponse)
async def get_latest(engine: QueryEngine = Depends(get_query_engine)):
    reading = engine.snapshot()
    return ApiResponse(data=reading.to_wire() if reading else None)


@router.get("/history", response_model=ApiResponse)
async def get_history(
    limit: Optional[int] = None,
    device_id: Optional[str] = Query(None, alias="deviceId"),
    engine: QueryEngine = Depends(get_query_engine),
):
    records = engine.history(limit=limit, device_id=device_id)
    return ApiResponse(data=[r.to_wire() for r in records])


@router.get("/history/range", response_model=ApiResponse)
async def get_history_range(
    start: str,
    end: str,
    device_id: Optional[str] = Query(None, alias="deviceId"),
    engine: QueryEngine = Depends(get_query_engine),
):
    records = engine.history_range(start, end, device_id=device_id)
    return ApiResponse(data=[r.to_wire() for r in records])


@router.get("/stats", response_model=ApiResponse)
async def get_stats(
    device_id: Optional[str] = Query(None, alias="deviceId"),
    engine: QueryEngine = Depends(get_query_engine),
):
    return ApiResponse(data=engine.stats(device_id=device_id).to_wire())

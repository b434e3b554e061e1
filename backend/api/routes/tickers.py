"""
Ticker command endpoints.

POST /v1/tickers/{channel_id}/start  create a ticker and queue its schedule job
POST /v1/tickers/{channel_id}/stop   terminate a running or scheduled ticker
POST /v1/tickers/{channel_id}/reset  forget all state for the channel
GET  /v1/tickers                     every ticker held by the registry
GET  /v1/tickers/{channel_id}        one ticker
"""
from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, status

from shared.errors import TickerNotFoundError
from shared.models.domain import StartTickerRequest, TickerSnapshot
from shared.utils.logging import get_logger

from api.dependencies import get_ticker_service
from ticker.service import TickerService

logger = get_logger(__name__)
router = APIRouter(prefix="/v1/tickers", tags=["tickers"])


@router.get("")
async def list_tickers(
    service: TickerService = Depends(get_ticker_service),
) -> list[TickerSnapshot]:
    return service.list_tickers()


@router.get("/{channel_id}")
async def get_ticker(
    channel_id: str,
    service: TickerService = Depends(get_ticker_service),
) -> TickerSnapshot:
    snapshot = service.get_ticker(channel_id)
    if snapshot is None:
        raise TickerNotFoundError(channel_id)
    return snapshot


@router.post("/{channel_id}/start", status_code=status.HTTP_202_ACCEPTED)
async def start_ticker(
    channel_id: str,
    body: StartTickerRequest,
    service: TickerService = Depends(get_ticker_service),
) -> TickerSnapshot:
    """
    Accept a start command. Resolution happens asynchronously in a worker;
    poll GET /v1/tickers/{channel_id} to follow the ticker's status.
    """
    return await service.start_ticker(
        channel_id, body.source_ref, channel_name=body.channel_name, mode=body.mode
    )


@router.post("/{channel_id}/stop")
async def stop_ticker(
    channel_id: str,
    service: TickerService = Depends(get_ticker_service),
) -> TickerSnapshot:
    return await service.stop_ticker(channel_id)


@router.post("/{channel_id}/reset")
async def reset_ticker(
    channel_id: str,
    service: TickerService = Depends(get_ticker_service),
) -> dict[str, Any]:
    existed = await service.reset_ticker(channel_id)
    return {"channel_id": channel_id, "reset": True, "existed": existed}

from fastapi import APIRouter, Depends

from resale_sync.dependencies import get_sync_engine
from resale_sync.models.marketplace import SyncCancelResponse, SyncOrdersRequest, SyncOrdersResponse
from resale_sync.services.sync_engine import SyncEngine
from resale_sync.utils.logger import logger

router = APIRouter(prefix="/sync", tags=["sync"])


@router.post("/orders", response_model=SyncOrdersResponse)
async def sync_orders(
    sync_request: SyncOrdersRequest,
    engine: SyncEngine = Depends(get_sync_engine),
):
    """Run one order sync for the principal and wait for it to finish."""
    logger.info(f"Orders sync requested: principal={sync_request.principal_id} window_days={sync_request.window_days}")
    result = await engine.synchronize(sync_request.principal_id, sync_request.window_days)
    return SyncOrdersResponse(**result.summary())


@router.post("/cancel/{run_id}", response_model=SyncCancelResponse)
async def cancel_sync(run_id: str, engine: SyncEngine = Depends(get_sync_engine)):
    cancelled = engine.cancel_run(run_id)
    return SyncCancelResponse(run_id=run_id, cancelled=cancelled)

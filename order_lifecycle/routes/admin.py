from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse

from order_lifecycle.dependencies import get_reconciliation_log
from order_lifecycle.reconciliation import RedisReconciliationLog

router = APIRouter(prefix="/admin", tags=["admin"])


@router.get("/reconciliation")
async def reconciliation_queue(
    limit: int = Query(default=100, ge=1, le=1000),
    log: RedisReconciliationLog = Depends(get_reconciliation_log),
) -> JSONResponse:
    """
    Refunds issued for orders whose cancellation was never committed, newest first.
    Each entry needs a manual fix of the order row.
    """
    entries = await log.pending(limit=limit)
    return JSONResponse(
        status_code=200,
        content={"status": "ok", "total": await log.count(), "entries": entries},
    )

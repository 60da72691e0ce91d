"""POST /v1/connections/{connection_id}/sync - sync and analyze a bank connection"""

import logging
import time

from fastapi import APIRouter, Depends, HTTPException, Request

from banking_monitor.api.dependencies import get_provider_client, get_request_id, get_store, get_tenant_id
from banking_monitor.api.v1.schemas import SyncResponse, SyncResultSchema
from banking_monitor.domain.exceptions import ConnectionNotFoundError, ConnectionNotLinkedError
from banking_monitor.infrastructure.clients.nordigen import NordigenClient
from banking_monitor.infrastructure.database.repositories import SqlAlchemyBankingStore
from banking_monitor.services.monitoring import MonitoringPipeline

router = APIRouter()


@router.post("/connections/{connection_id}/sync", response_model=SyncResponse)
async def sync_connection(
    connection_id: str,
    request: Request,
    tenant_id: str = Depends(get_tenant_id),
    store: SqlAlchemyBankingStore = Depends(get_store),
    provider_client: NordigenClient = Depends(get_provider_client),
):
    """
    Sync all accounts of a connection, then analyze new and changed transactions.

    Account-level failures do not fail the request; they are reported per
    account and the response is marked degraded.
    """
    start_time = time.time()
    request_id = get_request_id(request)

    # Connections of other tenants are reported as missing
    connection = store.get_connection(connection_id)
    if connection is None or connection.tenant_id != tenant_id:
        raise HTTPException(status_code=404, detail="Connection not found")

    try:
        report = await MonitoringPipeline(provider_client, store).run(connection_id, tenant_id)

    except ConnectionNotFoundError:
        raise HTTPException(status_code=404, detail="Connection not found")

    except ConnectionNotLinkedError as e:
        logging.warning(f"Sync rejected: {e}", extra={"request_id": request_id, "connection_id": connection_id})
        raise HTTPException(status_code=409, detail=str(e))

    except Exception as e:
        store.rollback()
        logging.error(f"Unexpected sync error: {e}", extra={"request_id": request_id, "connection_id": connection_id})
        raise HTTPException(status_code=500, detail="Internal server error")

    logging.info(
        "Connection sync request completed",
        extra={
            "request_id": request_id,
            "connection_id": connection_id,
            "degraded": report.degraded,
            "duration_ms": round((time.time() - start_time) * 1000, 2),
        },
    )

    return SyncResponse(
        connection_id=connection_id,
        results=[SyncResultSchema.from_domain(result) for result in report.sync_results],
        analyzed=report.analyzed,
        flagged=report.flagged,
        alerts_created=report.alerts_created,
        degraded=report.degraded,
    )

"""POST /v1/transactions/{transaction_id}/flag - manual review flag"""

import logging

from fastapi import APIRouter, Depends, HTTPException, Request

from banking_monitor.api.dependencies import get_request_id, get_store, get_tenant_id
from banking_monitor.api.v1.schemas import FlagRequest, FlagSchema, TransactionFlagsResponse
from banking_monitor.domain.exceptions import TransactionNotFoundError
from banking_monitor.infrastructure.database.repositories import SqlAlchemyBankingStore
from banking_monitor.services import monitoring

router = APIRouter()


@router.post("/transactions/{transaction_id}/flag", response_model=TransactionFlagsResponse)
def flag_transaction(
    transaction_id: str,
    request_body: FlagRequest,
    request: Request,
    tenant_id: str = Depends(get_tenant_id),
    store: SqlAlchemyBankingStore = Depends(get_store),
):
    """Append a manual flag to a transaction and recompute its anomaly score"""
    if store.get_transaction_tenant_id(transaction_id) != tenant_id:
        raise HTTPException(status_code=404, detail="Transaction not found")

    try:
        transaction = monitoring.flag_transaction(store, transaction_id, request_body.reason)
    except TransactionNotFoundError:
        raise HTTPException(status_code=404, detail="Transaction not found")

    logging.info(
        "Transaction flagged manually",
        extra={"request_id": get_request_id(request), "transaction_id": transaction_id, "tenant_id": tenant_id},
    )
    return TransactionFlagsResponse(
        transaction_id=transaction.id,
        anomaly_score=transaction.anomaly_score,
        flags=[FlagSchema.from_domain(flag) for flag in transaction.flags],
    )

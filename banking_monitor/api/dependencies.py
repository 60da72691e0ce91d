"""Dependency injection for FastAPI endpoints"""

from fastapi import Depends, Header, HTTPException, Request
from sqlalchemy.orm import Session

from banking_monitor.infrastructure.clients.nordigen import NordigenClient
from banking_monitor.infrastructure.database.repositories import SqlAlchemyBankingStore
from banking_monitor.infrastructure.database.session import get_db


def get_request_id(request: Request) -> str:
    """Extract request ID from request state"""
    return getattr(request.state, "request_id", "unknown")


def get_tenant_id(x_tenant_id: str | None = Header(None)) -> str:
    """Tenant scope; authentication happens upstream and forwards X-Tenant-ID"""
    if not x_tenant_id:
        raise HTTPException(status_code=400, detail="X-Tenant-ID header is required")
    return x_tenant_id


def get_provider_client() -> NordigenClient:
    """Provide open banking provider client instance"""
    return NordigenClient()


def get_store(db: Session = Depends(get_db)) -> SqlAlchemyBankingStore:
    return SqlAlchemyBankingStore(db)

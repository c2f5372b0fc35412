"""
Dependency wiring for the HTTP layer.

The publisher and audit sink are process-wide and built once; stores and
services are built per request around the request's Session. Tests swap any
of these through `app.dependency_overrides`.
"""
from functools import lru_cache
from typing import Annotated

from fastapi import Depends
from sqlmodel import Session

from .audit import DatabaseAuditSink
from .db import engine, get_session
from .events import NullEventPublisher, RedisEventPublisher
from .order_service import OrderLifecycleManager
from .payment_service import PaymentLedger
from .ports import AuditSink, EventPublisher
from .settings import settings
from .shift_service import ShiftLedger
from .store import OrderStore, PaymentStore, ShiftStore, SqlCatalogReader


@lru_cache
def get_publisher() -> EventPublisher:
    # An empty REDIS_URL disables real-time updates
    if not settings.redis_url:
        return NullEventPublisher()
    return RedisEventPublisher()


@lru_cache
def get_audit_sink() -> AuditSink:
    return DatabaseAuditSink(engine)


def get_payment_ledger(
    session: Annotated[Session, Depends(get_session)],
    publisher: Annotated[EventPublisher, Depends(get_publisher)],
    audit: Annotated[AuditSink, Depends(get_audit_sink)],
) -> PaymentLedger:
    return PaymentLedger(
        payments=PaymentStore(session),
        orders=OrderStore(session),
        catalog=SqlCatalogReader(session),
        publisher=publisher,
        audit=audit,
    )


def get_order_manager(
    session: Annotated[Session, Depends(get_session)],
    payments: Annotated[PaymentLedger, Depends(get_payment_ledger)],
    publisher: Annotated[EventPublisher, Depends(get_publisher)],
    audit: Annotated[AuditSink, Depends(get_audit_sink)],
) -> OrderLifecycleManager:
    return OrderLifecycleManager(
        orders=OrderStore(session),
        catalog=SqlCatalogReader(session),
        payments=payments,
        publisher=publisher,
        audit=audit,
    )


def get_shift_ledger(
    session: Annotated[Session, Depends(get_session)],
    audit: Annotated[AuditSink, Depends(get_audit_sink)],
) -> ShiftLedger:
    return ShiftLedger(shifts=ShiftStore(session), audit=audit)


def get_catalog(session: Annotated[Session, Depends(get_session)]) -> SqlCatalogReader:
    return SqlCatalogReader(session)

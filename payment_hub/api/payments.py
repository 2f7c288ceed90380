"""
Payment endpoints.

GET  /payments                                     Payment history (paginated, newest first).
GET  /payments/providers                           Providers registered at startup.
POST /payments/{provider}/create                   Create a payment and record it.
POST /payments/{provider}/confirm                  Confirm a payment and reconcile the ledger.
GET  /payments/{provider}/{external_id}/status     Re-query the provider and reconcile.
GET  /payments/{provider}/{external_id}/trace      Ledger record plus its audit trail.
POST /payments/{provider}/webhook                  Provider notifications (raw body).
GET  /payments/mercadopago/feedback                MercadoPago browser return (re-fetched).
"""

import json
import logging
import math
from decimal import Decimal
from typing import Any, Awaitable, Optional, TypeVar
from urllib.parse import urlencode

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import JSONResponse, RedirectResponse
from pydantic import BaseModel
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from payment_hub.config import settings
from payment_hub.database import get_session
from payment_hub.engine.errors import (
    ProviderAPIError,
    UnsupportedProviderError,
    ValidationError,
    WebhookVerificationError,
)
from payment_hub.engine.reconciliation import find_record, reconcile, record_payment
from payment_hub.engine.service import PaymentService
from payment_hub.models.enums import Provider
from payment_hub.models.ledger import AuditLog, PaymentRecord
from payment_hub.models.payment import (
    ConfirmationResult,
    PaymentRequest,
    PaymentResult,
    RawWebhookRequest,
    WebhookEvent,
)

logger = logging.getLogger("payment_hub.api")

router = APIRouter(prefix="/payments", tags=["payments"])

T = TypeVar("T")


class CreatePaymentBody(BaseModel):
    amount: Decimal
    currency: str
    description: str = ""
    return_url: Optional[str] = None
    cancel_url: Optional[str] = None
    metadata: dict[str, Any] = {}


class ConfirmPaymentBody(BaseModel):
    external_id: str
    additional_data: dict[str, Any] = {}


class PaymentResponse(BaseModel):
    external_id: str
    status: str
    provider: str
    amount: Optional[Decimal]
    currency: Optional[str]
    requires_approval: bool
    requires_action: bool
    redirect_url: Optional[str]
    additional_data: dict[str, Any]


class ConfirmationResponse(BaseModel):
    success: bool
    status: str
    external_id: str
    provider: str
    amount: Optional[Decimal]
    currency: Optional[str]
    error: Optional[str]


class PaymentRecordDetail(BaseModel):
    id: str
    provider: str
    external_id: str
    payment_id: Optional[str]
    reference: Optional[str]
    user_id: Optional[str] = None
    amount: Optional[Decimal]
    currency: Optional[str]
    status: str
    status_updated_at: Optional[str]
    metadata: Optional[dict] = None
    created_at: Optional[str]
    updated_at: Optional[str]


class AuditEntry(BaseModel):
    id: int
    action: str
    details: Optional[dict] = None
    timestamp: Optional[str]


class PaymentTrace(BaseModel):
    payment: PaymentRecordDetail
    audit_trail: list[AuditEntry]


class Pagination(BaseModel):
    page: int
    limit: int
    total: int
    total_pages: int


class PaymentHistory(BaseModel):
    payments: list[PaymentRecordDetail]
    pagination: Pagination


def get_payment_service(request: Request) -> PaymentService:
    """The service built once in the app lifespan."""
    return request.app.state.payment_service


async def _dispatch(call: Awaitable[T]) -> T:
    """Translate payment errors for the JSON endpoints."""
    try:
        return await call
    except (UnsupportedProviderError, ValidationError) as e:
        raise HTTPException(status_code=400, detail=str(e))
    except ProviderAPIError as e:
        raise HTTPException(status_code=502, detail=str(e))


def _result_to_response(result: PaymentResult) -> PaymentResponse:
    return PaymentResponse(
        external_id=result.external_id,
        status=result.status.value,
        provider=result.provider,
        amount=result.amount,
        currency=result.currency,
        requires_approval=result.requires_approval,
        requires_action=result.requires_action,
        redirect_url=result.redirect_url,
        additional_data=json.loads(json.dumps(result.additional_data, default=str)),
    )


def _confirmation_to_response(result: ConfirmationResult) -> ConfirmationResponse:
    return ConfirmationResponse(
        success=result.success,
        status=result.status.value,
        external_id=result.external_id,
        provider=result.provider,
        amount=result.amount,
        currency=result.currency,
        error=result.error,
    )


def _record_to_detail(r: PaymentRecord) -> PaymentRecordDetail:
    return PaymentRecordDetail(
        id=r.id,
        provider=r.provider,
        external_id=r.external_id,
        payment_id=r.payment_id,
        reference=r.reference,
        user_id=r.user_id,
        amount=r.amount,
        currency=r.currency,
        status=r.status,
        status_updated_at=r.status_updated_at.isoformat() if r.status_updated_at else None,
        metadata=r.payment_metadata,
        created_at=r.created_at.isoformat() if r.created_at else None,
        updated_at=r.updated_at.isoformat() if r.updated_at else None,
    )


@router.get("", response_model=PaymentHistory)
async def list_payments(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    user_id: Optional[str] = Query(None, description="Filter by the userId sent as metadata"),
    provider: Optional[str] = Query(None, description="Filter by provider"),
    status: Optional[str] = Query(None, description="Filter by normalized status"),
    session: AsyncSession = Depends(get_session),
):
    """Payment history, newest first, one page at a time."""
    filters = []
    if user_id:
        filters.append(PaymentRecord.user_id == user_id)
    if provider:
        filters.append(PaymentRecord.provider == provider)
    if status:
        filters.append(PaymentRecord.status == status)

    total = (await session.execute(
        select(func.count()).select_from(PaymentRecord).where(*filters)
    )).scalar_one()
    result = await session.execute(
        select(PaymentRecord)
        .where(*filters)
        .order_by(PaymentRecord.created_at.desc())
        .limit(limit)
        .offset((page - 1) * limit)
    )

    return PaymentHistory(
        payments=[_record_to_detail(r) for r in result.scalars().all()],
        pagination=Pagination(page=page, limit=limit, total=total, total_pages=math.ceil(total / limit)),
    )


@router.get("/mercadopago/feedback")
async def mercadopago_feedback(
    payment_id: Optional[str] = Query(None),
    preference_id: Optional[str] = Query(None),
    service: PaymentService = Depends(get_payment_service),
    session: AsyncSession = Depends(get_session),
):
    """
    Browser return from MercadoPago checkout.

    The query string only names the payment. Its claimed status is ignored:
    the payment is re-fetched, reconciled like any other observation, and
    the payer is redirected to the frontend with the fetched status.
    """
    # MercadoPago sends payment_id=null when the payer left without paying
    if payment_id == "null":
        payment_id = None
    external_id = payment_id or preference_id
    if not external_id:
        raise HTTPException(status_code=400, detail="payment_id or preference_id is required")

    result = await _dispatch(service.get_payment_status(Provider.MERCADOPAGO.value, external_id))
    await reconcile(session, result)
    await session.commit()

    query = urlencode({"status": result.status.value, "payment_id": result.external_id})
    return RedirectResponse(f"{settings.frontend_url.rstrip('/')}/payment/status?{query}", status_code=302)


@router.get("/providers")
async def list_providers(service: PaymentService = Depends(get_payment_service)):
    """Providers whose credentials were configured at startup."""
    return {"providers": service.get_available_providers()}


@router.post("/{provider}/create", response_model=PaymentResponse, status_code=201)
async def create_payment(
    provider: str,
    body: CreatePaymentBody,
    service: PaymentService = Depends(get_payment_service),
    session: AsyncSession = Depends(get_session),
):
    """Create a payment with the provider and record it in the ledger as pending."""
    request = PaymentRequest(
        amount=body.amount,
        currency=body.currency,
        description=body.description,
        return_url=body.return_url,
        cancel_url=body.cancel_url,
    )
    result = await _dispatch(service.create_payment(provider, request, body.metadata))
    await record_payment(session, result, body.metadata)
    await session.commit()
    return _result_to_response(result)


@router.post("/{provider}/confirm", response_model=ConfirmationResponse)
async def confirm_payment(
    provider: str,
    body: ConfirmPaymentBody,
    service: PaymentService = Depends(get_payment_service),
    session: AsyncSession = Depends(get_session),
):
    """Run the provider's confirmation step and apply the outcome to the ledger."""
    result = await _dispatch(service.confirm_payment(provider, body.external_id, body.additional_data))
    await reconcile(session, result)
    await session.commit()
    return _confirmation_to_response(result)


@router.get("/{provider}/{external_id}/status", response_model=PaymentResponse)
async def get_payment_status(
    provider: str,
    external_id: str,
    service: PaymentService = Depends(get_payment_service),
    session: AsyncSession = Depends(get_session),
):
    """Re-query the provider (source of truth) and reconcile the ledger."""
    result = await _dispatch(service.get_payment_status(provider, external_id))
    await reconcile(session, result)
    await session.commit()
    return _result_to_response(result)


@router.get("/{provider}/{external_id}/trace", response_model=PaymentTrace)
async def get_payment_trace(
    provider: str,
    external_id: str,
    session: AsyncSession = Depends(get_session),
):
    """
    Ledger record plus every audit entry for it, oldest first.

    Useful for seeing which webhook or confirmation set the current status
    and which observations were dropped as stale.
    """
    record = await find_record(session, provider, external_id)
    if not record:
        raise HTTPException(status_code=404, detail=f"Payment not found: {provider}/{external_id}")

    result = await session.execute(
        select(AuditLog)
        .where(AuditLog.payment_id == record.id)
        .order_by(AuditLog.timestamp.asc(), AuditLog.id.asc())
    )

    audit_trail = []
    for log in result.scalars().all():
        details = None
        if log.details:
            try:
                details = json.loads(log.details)
            except (json.JSONDecodeError, TypeError):
                details = {"raw": log.details}

        audit_trail.append(AuditEntry(
            id=log.id,
            action=log.action,
            details=details,
            timestamp=log.timestamp.isoformat() if log.timestamp else None,
        ))

    return PaymentTrace(payment=_record_to_detail(record), audit_trail=audit_trail)


@router.post("/{provider}/webhook")
async def receive_webhook(
    provider: str,
    request: Request,
    service: PaymentService = Depends(get_payment_service),
    session: AsyncSession = Depends(get_session),
):
    """
    Provider notification endpoint.

    The body is read as raw bytes and handed over untouched; Stripe signs
    those exact bytes. Responses are a bare {"received": ...} and never
    include error detail.
    """
    raw = RawWebhookRequest(headers=dict(request.headers), body=await request.body())

    try:
        outcome = await service.handle_webhook(provider, raw)
    except (UnsupportedProviderError, WebhookVerificationError) as e:
        logger.warning("Rejected %s webhook: %s", provider, e)
        return JSONResponse(status_code=400, content={"received": False})
    except ProviderAPIError as e:
        logger.error("Could not process %s webhook: %s", provider, e)
        return JSONResponse(status_code=503, content={"received": False})

    if isinstance(outcome, WebhookEvent):
        _, applied = await reconcile(session, outcome)
        await session.commit()
        logger.info("%s webhook for %s: %s", provider, outcome.external_id, applied.value)

    return {"received": True}

"""Liveness endpoint."""

from fastapi import APIRouter, Request

router = APIRouter(tags=["health"])


@router.get("/health")
async def health(request: Request):
    service = request.app.state.payment_service
    return {"status": "ok", "providers": service.get_available_providers()}

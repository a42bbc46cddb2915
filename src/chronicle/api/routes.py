from fastapi import APIRouter, Request
from pydantic import BaseModel

from chronicle.config import get_settings

router = APIRouter()


class HealthResponse(BaseModel):
    status: str
    backend: str | None
    degraded: bool


@router.get("/health", response_model=HealthResponse)
async def health_check(request: Request):
    context = request.app.state.store_context
    return HealthResponse(
        status="healthy",
        backend=context.kind.value if context.kind else None,
        degraded=context.degraded,
    )


@router.get("/")
async def root():
    return {
        "service": get_settings().app_name,
        "message": "Store service is running",
    }

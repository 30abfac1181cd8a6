from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import PlainTextResponse

from ..auth.authenticator import Principal
from ..errors import Unauthorized
from ..models.api_models import (
    ExplainRequest,
    HistoryData,
    HistoryItem,
    HistoryResponse,
    ProfileData,
    ProfileResponse,
)
from ..services.streaming_relay import GenerationSession
from .dependencies import Services, get_services
from .streaming import RelayStreamingResponse

router = APIRouter(prefix="/api", tags=["explain"])
root_router = APIRouter()


def read_credentials(request: Request) -> Optional[str]:
    """Bearer token from the Authorization header, else the `token` cookie."""
    authorization = request.headers.get("Authorization", "")
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() == "bearer" and token.strip():
        return token.strip()
    return request.cookies.get("token") or None


async def require_principal(
    request: Request, services: Services = Depends(get_services)
) -> Principal:
    return await services.authenticator.authenticate(read_credentials(request))


@router.post("/explain")
async def explain(
    payload: ExplainRequest,
    request: Request,
    services: Services = Depends(get_services),
) -> RelayStreamingResponse:
    session: GenerationSession = await services.relay.open(
        read_credentials(request),
        payload,
        correlation_id=getattr(request.state, "request_id", None),
    )
    return RelayStreamingResponse(session, is_disconnected=request.is_disconnected)


@router.get("/auth/me", response_model=ProfileResponse)
async def get_me(
    principal: Principal = Depends(require_principal),
    services: Services = Depends(get_services),
) -> ProfileResponse:
    user = await services.db.get_user(principal.user_id)
    if user is None:
        raise Unauthorized("No user found with this ID.")
    return ProfileResponse(data=ProfileData.from_account(user))


@router.get("/user/history", response_model=HistoryResponse)
async def get_history(
    limit: Optional[int] = Query(default=None, ge=1),
    principal: Principal = Depends(require_principal),
    services: Services = Depends(get_services),
) -> HistoryResponse:
    user = await services.db.get_user(principal.user_id)
    if user is None:
        raise Unauthorized("No user found with this ID.")
    records = await services.history.recent(principal.user_id, limit)
    return HistoryResponse(
        data=HistoryData(
            user=ProfileData.from_account(user),
            history=[HistoryItem.from_record(r) for r in records],
        )
    )


@root_router.get("/", response_class=PlainTextResponse)
async def index() -> str:
    return "AI Code Explainer API is running."


@root_router.get("/health")
async def health() -> dict[str, str]:
    return {"status": "ok"}

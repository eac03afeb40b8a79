import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from fastapi import APIRouter, Depends, FastAPI, Request, status
from fastapi.responses import JSONResponse

from camp_transfers.database import get_db, load_sample_data
from camp_transfers.errors import TransferError
from camp_transfers.logging_config import configure_logging
from camp_transfers.models import (
    ActorAction,
    ArrivalDetails,
    ExpectedArrival,
    TransferLogEntry,
    TransferRequest,
    TransferSubmission,
)
from camp_transfers.orchestrator import TransferOrchestrator, get_orchestrator
from camp_transfers.settings import get_settings

logger = logging.getLogger(__name__)

router = APIRouter()

ERROR_STATUS_CODES = {
    "validation": 422,
    "conflict": status.HTTP_409_CONFLICT,
    "not_found": status.HTTP_404_NOT_FOUND,
    "dependency": status.HTTP_502_BAD_GATEWAY,
}


@router.get("/health")
async def health_check() -> dict[str, str]:
    return {"status": "ok"}


@router.post("/transfer-requests", status_code=status.HTTP_201_CREATED)
async def submit_transfer_request(
    submission: TransferSubmission,
    orchestrator: TransferOrchestrator = Depends(get_orchestrator),
) -> TransferRequest:
    """Create a transfer request in pending_allocation."""
    return await orchestrator.submit_transfer_request(submission)


@router.get("/transfer-requests/{request_id}")
async def get_transfer_request(
    request_id: str,
    orchestrator: TransferOrchestrator = Depends(get_orchestrator),
) -> TransferRequest:
    return await orchestrator.get_request(request_id)


@router.post("/transfer-requests/{request_id}/allocate")
async def allocate_beds(
    request_id: str,
    action: ActorAction | None = None,
    orchestrator: TransferOrchestrator = Depends(get_orchestrator),
) -> TransferRequest:
    """
    Allocate beds at the target camp for every person on the request.
    Idempotent: re-posting returns the frozen allocation.
    """
    actor_id = action.actor_id if action else None
    return await orchestrator.allocate_beds(request_id, actor_id)


@router.post("/transfer-requests/{request_id}/approve")
async def approve_dispatch(
    request_id: str,
    action: ActorAction | None = None,
    orchestrator: TransferOrchestrator = Depends(get_orchestrator),
) -> TransferRequest:
    actor_id = action.actor_id if action else None
    return await orchestrator.approve_dispatch(request_id, actor_id)


@router.post("/transfer-requests/{request_id}/reject-allocation")
async def reject_allocation(
    request_id: str,
    action: ActorAction,
    orchestrator: TransferOrchestrator = Depends(get_orchestrator),
) -> TransferRequest:
    return await orchestrator.reject_allocation(
        request_id, action.actor_id, action.reason
    )


@router.post("/transfer-requests/{request_id}/dispatch")
async def dispatch(
    request_id: str,
    action: ActorAction | None = None,
    orchestrator: TransferOrchestrator = Depends(get_orchestrator),
) -> TransferRequest:
    actor_id = action.actor_id if action else None
    return await orchestrator.dispatch(request_id, actor_id)


@router.post("/transfer-requests/{request_id}/arrivals/{person_id}")
async def confirm_arrival(
    request_id: str,
    person_id: str,
    details: ArrivalDetails,
    orchestrator: TransferOrchestrator = Depends(get_orchestrator),
) -> dict[str, Any]:
    """
    Confirm one person's physical arrival at the target camp.
    Re-confirming the same person is rejected with 409.
    """
    result = await orchestrator.confirm_arrival(request_id, person_id, details)
    return {
        "request": result.request.model_dump(mode="json"),
        "person": result.person.model_dump(mode="json"),
        "log_entry": result.log_entry.model_dump(mode="json"),
    }


@router.post("/transfer-requests/{request_id}/cancel")
async def cancel_request(
    request_id: str,
    action: ActorAction | None = None,
    orchestrator: TransferOrchestrator = Depends(get_orchestrator),
) -> TransferRequest:
    actor_id = action.actor_id if action else None
    reason = action.reason if action else None
    return await orchestrator.cancel_request(request_id, actor_id, reason)


@router.get("/camps/{camp_id}/expected-arrivals")
async def expected_arrivals(
    camp_id: str,
    orchestrator: TransferOrchestrator = Depends(get_orchestrator),
) -> list[ExpectedArrival]:
    return await orchestrator.expected_arrivals(camp_id)


@router.get("/persons/{person_id}/transfer-history")
async def transfer_history(
    person_id: str,
    orchestrator: TransferOrchestrator = Depends(get_orchestrator),
) -> list[TransferLogEntry]:
    return await orchestrator.transfer_history(person_id)


@router.get("/schedule-window")
async def schedule_window(
    source_camp_id: str,
    target_camp_id: str,
    orchestrator: TransferOrchestrator = Depends(get_orchestrator),
) -> dict[str, Any]:
    window, slots = await orchestrator.schedule_window(source_camp_id, target_camp_id)
    return {
        "window": window.model_dump(),
        "slots": [{"date": day.isoformat(), "time": time} for day, time in slots],
    }


async def transfer_error_handler(request: Request, exc: TransferError) -> JSONResponse:
    status_code = ERROR_STATUS_CODES.get(
        exc.kind, status.HTTP_500_INTERNAL_SERVER_ERROR
    )
    route = f"{request.method} {request.url.path}"
    if status_code >= 500:
        logger.error("%s failed: %s", route, exc.message)
    else:
        logger.info("%s rejected (%s): %s", route, exc.code, exc.message)
    return JSONResponse(status_code=status_code, content=exc.to_dict())


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    settings = get_settings()
    if settings.load_sample_data:
        load_sample_data(get_db(), settings.sample_data_path)
        logger.info("Loaded sample data into the in-memory database")
    yield


def create_app() -> FastAPI:
    settings = get_settings()
    configure_logging(source="api", level=settings.log_level)
    app = FastAPI(title=settings.app_name, lifespan=lifespan)
    app.add_exception_handler(TransferError, transfer_error_handler)
    app.include_router(router)
    return app

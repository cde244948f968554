"""Transfer history, cancellation and live progress routes."""

from fastapi import APIRouter, Depends, Query, WebSocket, WebSocketDisconnect

from common.constants import RECENT_TRANSFERS_LIMIT
from common.logging_config import get_logger
from stash.auth import get_current_owner
from stash.repositories.transfer_log_repository import TransferLogRepository
from stash.schemas.transfers import CancelTransferResponse, ListTransfersResponse, TransferResponse
from stash.service_locator import get_broadcaster, get_upload_orchestrator
from stash.services.upload_orchestrator import UploadOrchestrator

logger = get_logger(__name__)

router = APIRouter(tags=["Transfers"])


@router.get("/transfers", response_model=ListTransfersResponse)
async def list_transfers(
    limit: int = Query(RECENT_TRANSFERS_LIMIT, ge=1, le=200),
    current_owner: str = Depends(get_current_owner)
):
    """
    Most recent transfers of the caller, newest first.
    """
    logs = TransferLogRepository.list_recent(current_owner, limit)
    return ListTransfersResponse(transfers=[TransferResponse(**log.to_dict()) for log in logs])


@router.post("/transfers/{transfer_id}/cancel", response_model=CancelTransferResponse)
async def cancel_transfer(
    transfer_id: str,
    current_owner: str = Depends(get_current_owner),
    orchestrator: UploadOrchestrator = Depends(get_upload_orchestrator)
):
    """
    Request cancellation. A running upload stops before its next chunk.

    Raises:
        - 409: Transfer unknown or already finished
    """
    cancelling = orchestrator.cancel(transfer_id, current_owner)
    return CancelTransferResponse(transfer_id=transfer_id, cancelling=cancelling)


@router.websocket("/ws/transfers")
async def transfer_events(websocket: WebSocket, owner_id: str = Query(...)):
    """
    Push transfer events for one owner: recent_transfers on connect,
    then transfer_created / transfer_progress as they happen.
    """
    broadcaster = get_broadcaster()
    await websocket.accept()
    await broadcaster.subscribe(owner_id, websocket)

    try:
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        logger.debug(f"Transfer socket closed for owner {owner_id}")
    finally:
        broadcaster.unsubscribe(owner_id, websocket)

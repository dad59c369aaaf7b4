"""REST API routes."""

import logging
from typing import Any, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from pydantic import BaseModel
from tronpy.keys import is_base58check_address

from forwarder import __version__
from forwarder.api.websocket import manager
from forwarder.services import ApprovalQueueSigner, ForwardingMonitor, SigningRequest
from forwarder_core.amounts import sun_to_trx
from forwarder_core.models import ForwardingRun, LogEntry, MultisigStatus, Transaction

logger = logging.getLogger(__name__)

router = APIRouter()


# Response models
class MonitorStatus(BaseModel):
    """Monitor status response."""

    status: str
    version: str
    is_running: bool
    balance_sun: Optional[int] = None
    balance_trx: Optional[str] = None
    approving_address: Optional[str] = None
    multisig: MultisigStatus
    config: dict[str, Any]
    active_run: Optional[ForwardingRun] = None
    deferred_sun: int = 0


class ActionResponse(BaseModel):
    """Generic action response."""

    success: bool
    message: str


class SignerRequest(BaseModel):
    """Approving wallet connection request."""

    address: str


class RejectRequest(BaseModel):
    """Signing rejection request."""

    reason: str = "Rejected by operator"


# Dependencies
def get_monitor(request: Request) -> ForwardingMonitor:
    monitor = getattr(request.app.state, "monitor", None)
    if monitor is None:
        raise HTTPException(status_code=503, detail="Forwarder not initialized")
    return monitor


def get_signer(monitor: ForwardingMonitor = Depends(get_monitor)) -> ApprovalQueueSigner:
    if not isinstance(monitor.signer, ApprovalQueueSigner):
        raise HTTPException(status_code=404, detail="Interactive signer not enabled")
    return monitor.signer


@router.get("/status", response_model=MonitorStatus)
async def get_status(monitor: ForwardingMonitor = Depends(get_monitor)):
    """Get monitor status."""
    state = monitor.state
    balance = state.current_balance
    return MonitorStatus(
        status="running" if monitor.is_running else "stopped",
        version=__version__,
        is_running=monitor.is_running,
        balance_sun=balance,
        balance_trx=str(sun_to_trx(balance)) if balance is not None else None,
        approving_address=monitor.signer.address,
        multisig=monitor.verifier.status,
        config=monitor.config.public_view(),
        active_run=state.active_run,
        deferred_sun=state.deferred_amount,
    )


@router.post("/monitor/start", response_model=ActionResponse)
async def start_monitoring(monitor: ForwardingMonitor = Depends(get_monitor)):
    """Start balance monitoring."""
    if monitor.start():
        await manager.send_status({"is_running": True})
        return ActionResponse(success=True, message="Monitoring started")
    return ActionResponse(success=False, message="Monitoring already running")


@router.post("/monitor/stop", response_model=ActionResponse)
async def stop_monitoring(monitor: ForwardingMonitor = Depends(get_monitor)):
    """Stop balance monitoring. An in-flight forward is not aborted."""
    if await monitor.stop():
        await manager.send_status({"is_running": False})
        return ActionResponse(success=True, message="Monitoring stopped")
    return ActionResponse(success=False, message="Monitoring not running")


@router.post("/balance/refresh")
async def refresh_balance(monitor: ForwardingMonitor = Depends(get_monitor)):
    """Re-read the monitored balance."""
    balance = await monitor.refresh_balance()
    if balance is None:
        raise HTTPException(status_code=502, detail="Balance query failed")
    return {"balance_sun": balance, "balance_trx": str(sun_to_trx(balance))}


@router.get("/logs", response_model=list[LogEntry])
async def get_logs(
    limit: int = Query(100, ge=1, le=100, description="Maximum entries to return"),
    monitor: ForwardingMonitor = Depends(get_monitor),
):
    """Get activity log, most recent first."""
    return monitor.activity.list(limit=limit)


@router.delete("/logs", response_model=ActionResponse)
async def clear_logs(monitor: ForwardingMonitor = Depends(get_monitor)):
    """Clear the activity log."""
    monitor.activity.clear()
    return ActionResponse(success=True, message="Activity log cleared")


@router.get("/run", response_model=Optional[ForwardingRun])
async def get_run(monitor: ForwardingMonitor = Depends(get_monitor)):
    """Get the active forwarding run, or the last finished one."""
    return monitor.state.active_run or monitor.state.last_run


@router.get("/multisig", response_model=MultisigStatus)
async def get_multisig(monitor: ForwardingMonitor = Depends(get_monitor)):
    """Get the last computed multisig status."""
    return monitor.verifier.status


@router.post("/multisig/verify", response_model=MultisigStatus)
async def verify_multisig(monitor: ForwardingMonitor = Depends(get_monitor)):
    """Re-check the monitored account's permission."""
    return await monitor.verify_multisig()


@router.put("/signer", response_model=ActionResponse)
async def connect_signer(
    body: SignerRequest,
    signer: ApprovalQueueSigner = Depends(get_signer),
):
    """Connect or switch the approving wallet (re-verifies the multisig setup)."""
    if not is_base58check_address(body.address):
        raise HTTPException(status_code=422, detail="Invalid TRON address")
    changed = await signer.set_address(body.address)
    message = f"Connected to {body.address[:6]}...{body.address[-4:]}"
    return ActionResponse(success=True, message=message if changed else "Already connected")


@router.delete("/signer", response_model=ActionResponse)
async def disconnect_signer(signer: ApprovalQueueSigner = Depends(get_signer)):
    """Disconnect the approving wallet."""
    await signer.set_address(None)
    return ActionResponse(success=True, message="Approving wallet disconnected")


@router.get("/signer/pending", response_model=Optional[SigningRequest])
async def get_pending_signature(signer: ApprovalQueueSigner = Depends(get_signer)):
    """Get the transaction waiting for the approving wallet, if any."""
    return signer.pending


@router.post("/signer/pending/{tx_id}/signature", response_model=ActionResponse)
async def submit_signature(
    tx_id: str,
    signed: Transaction,
    signer: ApprovalQueueSigner = Depends(get_signer),
):
    """Submit the co-signed transaction for the pending request."""
    try:
        signer.submit(tx_id, signed)
    except LookupError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return ActionResponse(success=True, message="Signature received")


@router.post("/signer/pending/{tx_id}/reject", response_model=ActionResponse)
async def reject_signature(
    tx_id: str,
    body: Optional[RejectRequest] = None,
    signer: ApprovalQueueSigner = Depends(get_signer),
):
    """Reject the pending signing request."""
    reason = body.reason if body else "Rejected by operator"
    try:
        signer.reject(tx_id, reason)
    except LookupError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return ActionResponse(success=True, message="Signing request rejected")

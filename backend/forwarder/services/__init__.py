"""Forwarding services."""

from forwarder.services.approval_signer import ApprovalQueueSigner, SigningRequest
from forwarder.services.balance_poller import BalancePoller
from forwarder.services.forwarding_pipeline import ForwardingPipeline
from forwarder.services.monitor import ForwardingMonitor, MonitorState
from forwarder.services.multisig_verifier import MultisigVerifier

__all__ = [
    "ApprovalQueueSigner",
    "SigningRequest",
    "BalancePoller",
    "ForwardingPipeline",
    "ForwardingMonitor",
    "MonitorState",
    "MultisigVerifier",
]

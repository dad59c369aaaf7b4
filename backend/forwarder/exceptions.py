"""Forwarder exception hierarchy."""

from forwarder_core.models import InvalidTransitionError


class ForwarderError(Exception):
    """Base class for forwarder errors."""


class ConfigurationError(ForwarderError):
    """Missing or invalid configuration. Fatal: monitoring never starts."""


class LedgerError(ForwarderError):
    """A ledger RPC failed (transport error or node-reported error)."""


class SigningCancelled(ForwarderError):
    """The external signer rejected the request or gave up waiting."""


class AttemptFailed(ForwarderError):
    """A forwarding attempt failed and may be retried."""


class BroadcastUnconfirmed(ForwarderError):
    """The node may have accepted the transaction but acceptance could not be
    established. The run must not build another transaction."""


__all__ = [
    "AttemptFailed",
    "BroadcastUnconfirmed",
    "ConfigurationError",
    "ForwarderError",
    "InvalidTransitionError",
    "LedgerError",
    "SigningCancelled",
]

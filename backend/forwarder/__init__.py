"""TRON 2-of-2 multisig auto-forwarder service."""

__version__ = "0.1.0"

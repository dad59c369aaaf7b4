"""Core forwarding logic: models, delta detection, multisig rules, activity log.

This package contains pure business logic with no I/O dependencies
(no network access, no web framework). The ledger and the external
signer are reached only through the protocols in ``forwarder_core.ports``.
"""

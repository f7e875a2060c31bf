"""Staging relay for partially-signed Safe multisig transactions."""

__version__ = "0.1.0"

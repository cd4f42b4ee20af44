"""Ledger plugins and the factory that selects one from settings."""

from letter_shop.infrastructure.ledger.factory import build_ledger_client, load_ledger_factory
from letter_shop.infrastructure.ledger.memory import InMemoryLedger, InMemoryLedgerClient

__all__ = [
    "InMemoryLedger",
    "InMemoryLedgerClient",
    "build_ledger_client",
    "load_ledger_factory",
]

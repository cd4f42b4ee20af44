"""Ledger client factory.

The ``ledger_factory`` setting names a callable as ``"package.module:attribute"``.
The callable receives the local account name and the settings and returns an
object satisfying the LedgerClient protocol, so real ledger plugins can be
swapped in without touching the escrow services.
"""

from __future__ import annotations

import importlib
from typing import TYPE_CHECKING

from letter_shop.domain.exceptions import LedgerFactoryError
from letter_shop.domain.ledger import LedgerClient
from letter_shop.logging_config import get_logger

if TYPE_CHECKING:
    from collections.abc import Callable

    from letter_shop.config import Settings

logger = get_logger(__name__)


def load_ledger_factory(import_string: str) -> Callable[[str, Settings], LedgerClient]:
    """Resolve a ``module:attribute`` import string to a ledger factory."""
    module_name, sep, attribute = import_string.partition(":")
    if not sep or not module_name or not attribute:
        raise LedgerFactoryError(import_string, "expected 'module:attribute'")
    try:
        module = importlib.import_module(module_name)
    except ImportError as exc:
        raise LedgerFactoryError(import_string, str(exc)) from exc

    factory = module
    for part in attribute.split("."):
        try:
            factory = getattr(factory, part)
        except AttributeError as exc:
            raise LedgerFactoryError(import_string, f"no attribute '{part}'") from exc
    if not callable(factory):
        raise LedgerFactoryError(import_string, "not callable")
    return factory


def build_ledger_client(account: str, settings: Settings) -> LedgerClient:
    """Build the ledger client for ``account`` using the configured factory."""
    factory = load_ledger_factory(settings.ledger_factory)
    client = factory(account, settings)
    if not isinstance(client, LedgerClient):
        raise LedgerFactoryError(
            settings.ledger_factory, f"returned {type(client).__name__}, not a LedgerClient"
        )
    logger.debug("ledger.client_built", account=account, factory=settings.ledger_factory)
    return client

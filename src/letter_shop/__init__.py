"""Pay-on-delivery letter shop over a hash-locked ledger transfer."""

__version__ = "0.1.0"

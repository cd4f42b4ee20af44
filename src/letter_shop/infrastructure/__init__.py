"""Infrastructure — escrow storage and ledger plugins."""

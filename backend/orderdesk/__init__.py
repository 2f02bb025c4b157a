"""Order ledger and document lifecycle backend."""

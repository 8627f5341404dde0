"""Command-line interface for the rent ledger."""

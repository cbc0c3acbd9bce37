"""Kernel services: flush-only persistence and state rules for the stock ledger."""

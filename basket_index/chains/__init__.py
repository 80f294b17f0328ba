"""Ledger integrations."""

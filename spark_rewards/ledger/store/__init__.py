"""Ledger store adapters and the HTTP surface."""

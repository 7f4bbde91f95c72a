"""Payout batch distributor.

Reads scheduled rewards from the ledger, filters out dust and sanctioned
addresses, pays each batch on chain and confirms it back to the ledger.
"""

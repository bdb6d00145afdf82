"""Ceremony, codec, ledger and binding services."""

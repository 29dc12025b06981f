"""Command line interface for the takeoff ledger."""

"""REST API for pipeline runs, stored ledgers and policies."""

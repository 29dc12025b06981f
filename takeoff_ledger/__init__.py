"""
Takeoff Ledger.

Provenance ledger and staged inference pipeline for construction-document
takeoff: evidence is collected from drawings, assumptions are seeded from
code and regional defaults, competing inferences are produced per topic and
resolved into decisions (or flagged for review) under a versioned policy.
"""

__version__ = "0.1.0"

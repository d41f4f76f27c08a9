"""
Core modules for Quota Refill.

This package contains the reconciliation logic: calendar classification,
due-key selection, per-key refill, audit emission and the run orchestrator.
"""

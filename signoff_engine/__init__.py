"""Signed work-order reconciliation engine.

This package focuses on:
- mapping an operator's on-screen crop to a stable region in PDF points
- deciding, from an extractor's confidence, whether signed evidence is merged
  into the job ledger or parked for human review
- the review lifecycle (resolve, override) over one deterministic row identity

OCR, mail ingestion and UI rendering are left to the host application.
"""

from __future__ import annotations

__all__ = ["__version__"]

__version__ = "0.1.0"

"""
Accredit — Observability Infrastructure
"""

from accredit.telemetry.logging import setup_logging

__all__ = ["setup_logging"]

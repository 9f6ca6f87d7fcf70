"""
Accredit — Issuance System

Propose, vote and mint on behalf of one institution.
"""

from accredit.systems.issuance.service import AvailableActions, IssuanceService

__all__ = ["IssuanceService", "AvailableActions"]

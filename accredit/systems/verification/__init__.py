"""
Accredit — Verification System
"""

from accredit.systems.verification.service import CredentialVerifier, VerifiedCredential

__all__ = ["CredentialVerifier", "VerifiedCredential"]

"""
Accredit — multi-institution approval of credential issuance.

Proposals live on a CredentialNFT ledger; a local cache mirrors them for
quorum decisions and display.
"""

__version__ = "0.1.0"

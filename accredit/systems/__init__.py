"""
Accredit systems: quorum, sync, issuance, verification.
"""

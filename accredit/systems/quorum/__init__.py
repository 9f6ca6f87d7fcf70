"""
Accredit — Quorum System

Mintability decisions and one-vote-per-voter enforcement.
"""

from accredit.systems.quorum.decision import DecisionReason, QuorumDecision, decide, mintable
from accredit.systems.quorum.guard import VoteDedupGuard

__all__ = ["DecisionReason", "QuorumDecision", "decide", "mintable", "VoteDedupGuard"]

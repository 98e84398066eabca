"""
Voting workflows: proposal aggregation, the vote/reveal state machine,
vote-history reconstruction and the per-wallet context that wires them.
"""

from .aggregator import ProposalAggregator
from .context import VotingContext
from .history import VoteHistoryBuilder
from .orchestrator import RevealOutcome, VoteOrchestrator, VoteOutcome, VoteState

__all__ = [
    "ProposalAggregator",
    "RevealOutcome",
    "VoteHistoryBuilder",
    "VoteOrchestrator",
    "VoteOutcome",
    "VoteState",
    "VotingContext",
]

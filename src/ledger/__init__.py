from .contract import (
    LedgerRevertError,
    PendingTransaction,
    ProposalMetadata,
    VotingLedger,
    map_gas_estimation_error,
    map_ledger_error,
)

__all__ = [
    "LedgerRevertError",
    "PendingTransaction",
    "ProposalMetadata",
    "VotingLedger",
    "map_gas_estimation_error",
    "map_ledger_error",
]

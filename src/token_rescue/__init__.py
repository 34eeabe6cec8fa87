"""Guardian-approved recovery of backed-up token balances."""

from .balances import BalanceSnapshotter, RPCBalanceReader, TokenBalance
from .backend import HttpRecoveryDataSource, RecoveryDataSource
from .config import RescueConfig, get_config, set_config
from .contracts import (
    LocalAccountSigner,
    RecoveryReceipt,
    RecoverySubmitter,
    SimulatedSigner,
    TokenBackupsClient,
)
from .errors import (
    ExecutionInProgressError,
    PreconditionError,
    QuorumNotReachedError,
    RecoveryAlreadyCompletedError,
    RescueError,
    SnapshotError,
    SubmissionError,
    TransientFetchError,
)
from .executor import ExecutionState, RecoveryExecutor
from .links import build_rescue_link, parse_rescue_link
from .permit import MAX_UINT256, RecoveryCall, build_recovery_call, encode_recover_calldata
from .poller import SignaturePoller
from .quorum import QuorumStatus, evaluate, is_ready, signatures_left
from .records import GuardianSignature, RecordSnapshot, RecoveryRecord, RecoveryUpdate
from .rpc_client import ChainRPCClient
from .session import RecoverySession, SessionStatus

__version__ = "0.1.0"

__all__ = [
    "BalanceSnapshotter",
    "RPCBalanceReader",
    "TokenBalance",
    "HttpRecoveryDataSource",
    "RecoveryDataSource",
    "RescueConfig",
    "get_config",
    "set_config",
    "LocalAccountSigner",
    "RecoveryReceipt",
    "RecoverySubmitter",
    "SimulatedSigner",
    "TokenBackupsClient",
    "ExecutionInProgressError",
    "PreconditionError",
    "QuorumNotReachedError",
    "RecoveryAlreadyCompletedError",
    "RescueError",
    "SnapshotError",
    "SubmissionError",
    "TransientFetchError",
    "ExecutionState",
    "RecoveryExecutor",
    "build_rescue_link",
    "parse_rescue_link",
    "MAX_UINT256",
    "RecoveryCall",
    "build_recovery_call",
    "encode_recover_calldata",
    "SignaturePoller",
    "QuorumStatus",
    "evaluate",
    "is_ready",
    "signatures_left",
    "GuardianSignature",
    "RecordSnapshot",
    "RecoveryRecord",
    "RecoveryUpdate",
    "ChainRPCClient",
    "RecoverySession",
    "SessionStatus",
]

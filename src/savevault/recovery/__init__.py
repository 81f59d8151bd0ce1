"""Recovery of slots whose load failed."""

from .kinds import CANDIDATES, ErrorKind, LoadFailure, Strategy, classify, plan_strategies
from .orchestrator import (
    RecoveryAnalysis,
    RecoveryAttempt,
    RecoveryOrchestrator,
    RecoveryResult,
    StrategyOutcome,
)

__all__ = [
    "CANDIDATES",
    "ErrorKind",
    "LoadFailure",
    "Strategy",
    "classify",
    "plan_strategies",
    "RecoveryAnalysis",
    "RecoveryAttempt",
    "RecoveryOrchestrator",
    "RecoveryResult",
    "StrategyOutcome",
]

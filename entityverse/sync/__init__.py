"""Conflict-free memory replication between entities."""

from .vector_clock import ClockOrder, VectorClock, merge_clocks
from .memory_log import InvalidLogError, MemoryLog, MemoryLogEntry, MergeResult, merge_logs
from .trust import DataCategory, GateDecision, PrivacySettings, SharePolicy, TrustConfig, TrustGate
from .coordinator import MemorySync, SyncLedger, TransferResult

__all__ = [
    "ClockOrder",
    "VectorClock",
    "merge_clocks",
    "InvalidLogError",
    "MemoryLog",
    "MemoryLogEntry",
    "MergeResult",
    "merge_logs",
    "DataCategory",
    "GateDecision",
    "PrivacySettings",
    "SharePolicy",
    "TrustConfig",
    "TrustGate",
    "MemorySync",
    "SyncLedger",
    "TransferResult",
]

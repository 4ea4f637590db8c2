from __future__ import annotations

from duscan.scan.orchestrator import ScanHandle, ScanOrchestrator, ScanSession, resolve_root
from duscan.scan.progress import ProgressAggregator
from duscan.scan.walker import ScanCancelled, TreeWalker

__all__ = [
    "ProgressAggregator",
    "ScanCancelled",
    "ScanHandle",
    "ScanOrchestrator",
    "ScanSession",
    "TreeWalker",
    "resolve_root",
]

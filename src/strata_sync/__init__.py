"""
strata-sync: A resumable, concurrent transfer engine for Firestore collections.

This package copies collections, and optionally their nested
sub-collections, between two document stores in batched writes, with retry,
rate limiting, and a checkpoint that lets an interrupted run be resumed.

The primary entry point for programmatic use is `run_transfer`.
"""

from typing import List

from strata_sync.config import TransferConfig
from strata_sync.models import TransferResult
from strata_sync.orchestrator import TransferPipeline, run_transfer

__all__: List[str] = ["TransferConfig", "TransferPipeline", "TransferResult", "run_transfer"]

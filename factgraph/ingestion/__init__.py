"""
Ingestion layer for factgraph.

Turns scanner batches into committed facts and audit stubs.
"""

from factgraph.ingestion.pipeline import IngestionPipeline, SubmissionResult

__all__ = [
    "IngestionPipeline",
    "SubmissionResult",
]

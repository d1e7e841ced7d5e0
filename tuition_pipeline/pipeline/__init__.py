"""
Pipeline orchestration.

- TuitionPipeline: extract / verify / run / run_batch / quota reporting
- RetryController: bounded retry state machine
"""

from .pipeline import PipelineOutcome, TuitionPipeline
from .retry_controller import AttemptRecord, RetryController, RetryOutcome, RetryState

__all__ = [
    "AttemptRecord",
    "PipelineOutcome",
    "RetryController",
    "RetryOutcome",
    "RetryState",
    "TuitionPipeline",
]

"""
Core Engine Layer.

This package contains the scheduling logic: the job registry, the executor that
spawns and supervises the fetch worker, the progress parser, the drain loop,
the resume manager, the effects dispatcher and the DownloadEngine facade.
"""

from .engine import DownloadEngine, SubmitResult
from .state import EngineState

__all__ = ["DownloadEngine", "EngineState", "SubmitResult"]

"""exportpacker: batched, crash-safe archive export of record artifacts.

Public API surface:
    - ExportConfig: Runtime configuration
    - run: Config-driven entry point (store + pending records)
    - run_export: Programmatic entry point for an explicit record list
    - PipelineResult: Aggregated outcome of a run
"""

__version__ = "1.0.0"

from config.settings import ExportConfig
from exportpacker.models.results import PipelineResult
from exportpacker.pipeline import run, run_export

__all__ = [
    "__version__",
    "ExportConfig",
    "PipelineResult",
    "run",
    "run_export",
]

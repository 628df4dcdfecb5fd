from .windows import (
    WINDOW_DURATION,
    ProofReport,
    ProofWindow,
    ReportEngine,
    ReportSummary,
    tile_windows,
)

__all__ = [
    "WINDOW_DURATION",
    "ProofReport",
    "ProofWindow",
    "ReportEngine",
    "ReportSummary",
    "tile_windows",
]

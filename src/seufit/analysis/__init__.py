"""Cross-section analysis pipeline."""

from seufit.analysis.cross_section import (
    CrossSectionAnalysis,
    AnalysisResult,
    NumpyEncoder,
    run_analysis,
)

__all__ = [
    "CrossSectionAnalysis",
    "AnalysisResult",
    "NumpyEncoder",
    "run_analysis",
]

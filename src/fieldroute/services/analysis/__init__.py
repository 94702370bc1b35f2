"""Schedule analysis exports."""

from .scoring import efficiency_score
from .service import AnalysisReport, CostModel, analyze

__all__ = ["analyze", "AnalysisReport", "CostModel", "efficiency_score"]

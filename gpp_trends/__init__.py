"""
gpp_trends: long-term trend analysis of river gross primary productivity.

Loads daily stream-metabolism estimates, gap-fills and aggregates them,
and tests for trends in annual productivity and seasonal timing.
"""

__version__ = "0.1.0"

# Import main components for easier access
from gpp_trends.config import AnalysisConfig
from gpp_trends.core.data_structures import SiteTimeSeries
from gpp_trends.core.gapfill import fill_gaps
from gpp_trends.core.preprocessing import preprocess_site
from gpp_trends.io.loaders import read_site_csv, read_site_directory
from gpp_trends.analysis.aggregation import annual_summary, annual_summaries
from gpp_trends.analysis.phenology import annual_phenology
from gpp_trends.analysis.trends import analyze_trend, TrendResult
from gpp_trends.analysis.mixed_models import fit_mixed_model, MixedModelResult

__all__ = [
    # Core classes
    "AnalysisConfig",
    "SiteTimeSeries",
    "TrendResult",
    "MixedModelResult",
    # Main functions
    "fill_gaps",
    "preprocess_site",
    "read_site_csv",
    "read_site_directory",
    "annual_summary",
    "annual_summaries",
    "annual_phenology",
    "analyze_trend",
    "fit_mixed_model",
    # Version
    "__version__",
]

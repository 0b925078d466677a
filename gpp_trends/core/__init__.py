"""
Core modules for gpp_trends.

This package contains the site data structure, unit conversions, gap
filling and quality control of daily metabolism estimates.
"""

from gpp_trends.core.data_structures import (
    SiteTimeSeries,
    combine_sites,
    identify_common_columns,
)
from gpp_trends.core.units import (
    o2_to_carbon,
    carbon_to_o2,
    cfs_to_cms,
    cms_to_cfs,
    shortwave_to_par,
    par_to_daily_light,
    convert_column,
)
from gpp_trends.core.gapfill import (
    regularize_daily,
    find_gaps,
    fill_gaps,
    fill_site,
    normalize,
    coverage,
    days_in_year,
    water_year,
    period_length,
)
from gpp_trends.core.preprocessing import (
    detect_outliers_iqr,
    detect_outliers_zscore,
    detect_outliers_mad,
    flag_implausible_metabolism,
    k600_er_correlation,
    check_site_quality,
    preprocess_site,
)

__all__ = [
    # Data structures
    "SiteTimeSeries",
    "combine_sites",
    "identify_common_columns",
    # Units
    "o2_to_carbon",
    "carbon_to_o2",
    "cfs_to_cms",
    "cms_to_cfs",
    "shortwave_to_par",
    "par_to_daily_light",
    "convert_column",
    # Gap filling
    "regularize_daily",
    "find_gaps",
    "fill_gaps",
    "fill_site",
    "normalize",
    "coverage",
    "days_in_year",
    "water_year",
    "period_length",
    # Preprocessing
    "detect_outliers_iqr",
    "detect_outliers_zscore",
    "detect_outliers_mad",
    "flag_implausible_metabolism",
    "k600_er_correlation",
    "check_site_quality",
    "preprocess_site",
]

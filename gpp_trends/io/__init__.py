"""
Input/Output utilities for gpp_trends.

This module provides functions for reading site metabolism files and
writing result tables, figures and reports.
"""

from gpp_trends.io.loaders import (
    read_site_csv,
    read_site_directory,
    read_site_metadata,
    read_annual_drivers,
    standardize_columns,
)
from gpp_trends.io.export import (
    export_table,
    export_trend_results,
    export_model_results,
    save_figure,
    create_analysis_report,
)

__all__ = [
    "read_site_csv",
    "read_site_directory",
    "read_site_metadata",
    "read_annual_drivers",
    "standardize_columns",
    "export_table",
    "export_trend_results",
    "export_model_results",
    "save_figure",
    "create_analysis_report",
]

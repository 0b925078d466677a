"""
Quality control and preprocessing of daily metabolism estimates.

This module provides functions for:
- Outlier detection
- Screening of biologically implausible metabolism estimates
- K600-ER equifinality checks
- The full per-site preparation step (screen, gap-fill, convert)
"""

import numpy as np
import pandas as pd
from typing import Dict, Optional, Union
from scipy import stats
import warnings

from .data_structures import SiteTimeSeries
from .gapfill import regularize_daily, fill_gaps, coverage, water_year, period_length
from .units import o2_to_carbon
from ..config import AnalysisConfig


def detect_outliers_iqr(
    data: np.ndarray,
    factor: float = 1.5
) -> np.ndarray:
    """
    Detect outliers using the Interquartile Range (IQR) method.

    Parameters
    ----------
    data : np.ndarray
        Data values to check (NaN allowed, never flagged)
    factor : float, optional
        IQR multiplier for outlier bounds. Default is 1.5.

    Returns
    -------
    np.ndarray
        Boolean mask where True indicates an outlier
    """
    data = np.asarray(data, dtype=float)
    if np.all(np.isnan(data)):
        return np.zeros(data.shape, dtype=bool)

    q1 = np.nanpercentile(data, 25)
    q3 = np.nanpercentile(data, 75)
    iqr = q3 - q1

    lower_bound = q1 - factor * iqr
    upper_bound = q3 + factor * iqr

    with np.errstate(invalid='ignore'):
        return (data < lower_bound) | (data > upper_bound)


def detect_outliers_zscore(
    data: np.ndarray,
    threshold: float = 3.0
) -> np.ndarray:
    """
    Detect outliers using z-score method.

    Parameters
    ----------
    data : np.ndarray
        Data values to check
    threshold : float, optional
        Z-score threshold. Default is 3.0.

    Returns
    -------
    np.ndarray
        Boolean mask where True indicates an outlier
    """
    data = np.asarray(data, dtype=float)
    if np.sum(~np.isnan(data)) < 2 or np.nanstd(data) == 0:
        return np.zeros(data.shape, dtype=bool)

    z_scores = np.abs(stats.zscore(data, nan_policy='omit'))
    z_scores = np.where(np.isnan(data), 0.0, z_scores)
    return z_scores > threshold


def detect_outliers_mad(
    data: np.ndarray,
    threshold: float = 3.5
) -> np.ndarray:
    """
    Detect outliers using Median Absolute Deviation (MAD).

    More robust than z-score for the skewed distributions typical of
    daily GPP.

    Parameters
    ----------
    data : np.ndarray
        Data values to check
    threshold : float, optional
        Modified z-score threshold. Default is 3.5.

    Returns
    -------
    np.ndarray
        Boolean mask where True indicates an outlier
    """
    data = np.asarray(data, dtype=float)
    if np.all(np.isnan(data)):
        return np.zeros(data.shape, dtype=bool)

    median = np.nanmedian(data)
    mad = np.nanmedian(np.abs(data - median))

    with np.errstate(invalid='ignore'):
        if mad == 0:
            sd = np.nanstd(data)
            if sd == 0:
                return np.zeros(data.shape, dtype=bool)
            return np.abs(data - median) > threshold * sd

        modified_z_scores = 0.6745 * (data - median) / mad
        return np.abs(modified_z_scores) > threshold


OUTLIER_METHODS = {
    'iqr': detect_outliers_iqr,
    'zscore': detect_outliers_zscore,
    'mad': detect_outliers_mad,
}


def flag_implausible_metabolism(
    site: SiteTimeSeries,
    gpp_lower_limit: float = -0.5,
    er_upper_limit: float = 0.5,
    gpp_column: str = 'GPP',
    er_column: str = 'ER'
) -> pd.Series:
    """
    Flag days with biologically impossible metabolism estimates.

    GPP cannot be meaningfully negative and ER cannot be positive; small
    excursions are tolerated as model noise.

    Parameters
    ----------
    site : SiteTimeSeries
        Daily metabolism estimates in g O2 m⁻² d⁻¹
    gpp_lower_limit : float, optional
        Days with GPP below this value are flagged
    er_upper_limit : float, optional
        Days with ER above this value are flagged
    gpp_column, er_column : str, optional
        Column names

    Returns
    -------
    pd.Series
        Boolean flags aligned to the site index
    """
    site.check_required_variables([gpp_column])
    flags = site.data[gpp_column] < gpp_lower_limit

    if er_column in site.data.columns:
        flags |= site.data[er_column] > er_upper_limit

    return flags.fillna(False).astype(bool)


def k600_er_correlation(
    site: SiteTimeSeries,
    k600_column: str = 'K600',
    er_column: str = 'ER',
    min_points: int = 10
) -> float:
    """
    Pearson correlation between daily K600 and ER.

    A strong correlation indicates the metabolism model could not separate
    reaeration from respiration, which makes GPP/ER estimates unreliable.

    Returns
    -------
    float
        Correlation coefficient, NaN when either column is missing or there
        are fewer than `min_points` paired values
    """
    if k600_column not in site.data.columns or er_column not in site.data.columns:
        return np.nan

    paired = site.data[[k600_column, er_column]].dropna()
    if len(paired) < min_points:
        return np.nan
    if paired[k600_column].nunique() < 2 or paired[er_column].nunique() < 2:
        return np.nan

    r, _ = stats.pearsonr(paired[k600_column], paired[er_column])
    return float(r)


def check_site_quality(
    site: SiteTimeSeries,
    config: Optional[AnalysisConfig] = None,
    gpp_column: str = 'GPP'
) -> Dict[str, Union[bool, float, int, list]]:
    """
    Summarize the quality of a site's raw record.

    Parameters
    ----------
    site : SiteTimeSeries
        Raw daily record
    config : AnalysisConfig, optional
        Thresholds (defaults used when None)

    Returns
    -------
    dict
        Quality check results including 'usable' and 'quality_issues'
    """
    config = config or AnalysisConfig()
    results = {'site_id': site.site_id}

    if gpp_column not in site.data.columns or len(site) == 0:
        results.update({
            'n_days': len(site),
            'coverage': 0.0,
            'n_years': 0,
            'n_usable_years': 0,
            'k600_er_r': np.nan,
            'fraction_flagged': np.nan,
            'usable': False,
            'quality_issues': [f"No {gpp_column} data"],
        })
        return results

    gpp = site.data[gpp_column]
    results['n_days'] = int(gpp.notna().sum())
    results['coverage'] = coverage(gpp)

    # Same (water) year grouping as the annual summaries
    years = water_year(gpp.index, config.water_year_start_month)
    valid_per_year = gpp.notna().groupby(years).sum()
    yearly_coverage = valid_per_year / [
        period_length(int(y), config.water_year_start_month) for y in valid_per_year.index
    ]
    results['n_years'] = int(len(yearly_coverage))
    results['n_usable_years'] = int((yearly_coverage >= config.min_year_coverage).sum())

    r = k600_er_correlation(site)
    results['k600_er_r'] = r

    flags = flag_implausible_metabolism(
        site, config.gpp_lower_limit, config.er_upper_limit, gpp_column=gpp_column
    )
    n_valid = max(results['n_days'], 1)
    results['fraction_flagged'] = float(flags.sum()) / n_valid

    issues = []
    if results['n_usable_years'] < config.min_years:
        issues.append(
            f"Too few usable years ({results['n_usable_years']} < {config.min_years})"
        )
    if np.isfinite(r) and abs(r) > config.k600_er_max_r:
        issues.append(f"K600-ER correlation too strong (r = {r:.2f})")
    if results['fraction_flagged'] > 0.5:
        issues.append(f"Most days implausible ({results['fraction_flagged']:.0%} flagged)")

    results['usable'] = len(issues) == 0
    results['quality_issues'] = issues
    return results


def preprocess_site(
    site: SiteTimeSeries,
    config: Optional[AnalysisConfig] = None,
    outlier_method: Optional[str] = None,
    gpp_column: str = 'GPP',
    fill_columns: Optional[list] = None
) -> SiteTimeSeries:
    """
    Prepare a raw site record for aggregation.

    Steps: regularize to a daily calendar, remove implausible (and optionally
    outlying) GPP days, clip remaining small negative GPP to zero, gap-fill
    short gaps, and convert GPP/ER to carbon units.

    Parameters
    ----------
    site : SiteTimeSeries
        Raw site record in g O2 m⁻² d⁻¹
    config : AnalysisConfig, optional
        Thresholds (defaults used when None)
    outlier_method : str, optional
        'iqr', 'zscore' or 'mad' to additionally drop statistical outliers
    fill_columns : list, optional
        Extra driver columns to gap-fill alongside GPP

    Returns
    -------
    SiteTimeSeries
        New processed site with 'GPP_raw', 'GPP_flag' and 'GPP_filled' columns
    """
    config = config or AnalysisConfig()
    site.check_required_variables([gpp_column])

    result = regularize_daily(site)
    gpp = result.data[gpp_column].astype(float)
    result.set_variable(f"{gpp_column}_raw", gpp.copy(),
                        units=result.get_column_units(gpp_column), category='observed')

    flags = flag_implausible_metabolism(
        result, config.gpp_lower_limit, config.er_upper_limit, gpp_column=gpp_column
    )
    if outlier_method is not None:
        if outlier_method not in OUTLIER_METHODS:
            raise ValueError(f"Unknown outlier method: {outlier_method}")
        flags |= pd.Series(OUTLIER_METHODS[outlier_method](gpp.to_numpy()), index=gpp.index)

    n_flagged = int(flags.sum())
    if n_flagged and n_flagged == gpp.notna().sum():
        warnings.warn(f"Site {site.site_id}: every GPP estimate was flagged")

    screened = gpp.mask(flags)
    screened = screened.clip(lower=0)

    filled = fill_gaps(screened, max_gap=config.max_gap_days)
    result.set_variable(f"{gpp_column}_flag", flags, units='boolean', category='flag')
    result.set_variable(f"{gpp_column}_filled", screened.isna() & filled.notna(),
                        units='boolean', category='flag')

    gpp_units = result.get_column_units(gpp_column)
    if config.convert_to_carbon:
        filled = o2_to_carbon(filled, config.photosynthetic_quotient)
        gpp_units = 'g C m⁻² d⁻¹'
    result.set_variable(gpp_column, filled, units=gpp_units, category='filled')

    if 'ER' in result.data.columns:
        er = result.data['ER'].mask(flags)
        er = fill_gaps(er, max_gap=config.max_gap_days)
        er_units = result.get_column_units('ER')
        if config.convert_to_carbon:
            er = o2_to_carbon(er, config.photosynthetic_quotient)
            er_units = 'g C m⁻² d⁻¹'
        result.set_variable('ER', er, units=er_units, category='filled')
        result.set_variable('NEP', result.data[gpp_column] + result.data['ER'],
                            units=er_units, category='calculated')

    for col in fill_columns or []:
        if col in result.data.columns:
            original = result.data[col]
            driver = fill_gaps(original, max_gap=config.max_gap_days)
            result.set_variable(col, driver, units=result.get_column_units(col), category='filled')
            result.set_variable(f"{col}_filled", original.isna() & driver.notna(),
                                units='boolean', category='flag')
        else:
            warnings.warn(f"Site {site.site_id}: column '{col}' not found, not filled")

    return result

"""
Non-parametric trend tests for annual and monthly GPP series.

Sen's (Theil-Sen) slope gives the magnitude of a monotonic trend per year,
and the Mann-Kendall family of tests (via pymannkendall) its significance.
The modified tests correct the variance of the Mann-Kendall statistic for
serial correlation, which is common in annual river data.
"""

import numpy as np
import pandas as pd
from typing import Dict, List, Optional, Tuple, Union
from dataclasses import dataclass, asdict
from scipy.stats import theilslopes
import pymannkendall as mk
import warnings

from ..config import AnalysisConfig


MK_METHODS = {
    'original': mk.original_test,
    'hamed_rao': mk.hamed_rao_modification_test,
    'yue_wang': mk.yue_wang_modification_test,
    'prewhitening': mk.pre_whitening_modification_test,
    'trend_free_prewhitening': mk.trend_free_pre_whitening_modification_test,
}


@dataclass
class TrendResult:
    """Container for the trend test of one variable at one site."""
    variable: str
    n: int
    start_year: Optional[int]
    end_year: Optional[int]
    slope: float  # Sen's slope (units per year)
    intercept: float
    slope_lower: float
    slope_upper: float
    tau: float  # Kendall's tau
    p_value: float
    z: float
    trend: str  # 'increasing', 'decreasing', 'no trend' or 'insufficient data'
    significant: bool
    percent_change: float  # Slope as % of the median value per year
    method: str = 'original'
    site_id: Optional[str] = None

    def to_dict(self) -> Dict:
        return asdict(self)


def _clean_series(
    values: Union[np.ndarray, pd.Series, List],
    years: Optional[Union[np.ndarray, pd.Series, List]] = None
) -> Tuple[np.ndarray, np.ndarray]:
    values = np.asarray(values, dtype=float)
    if years is None:
        years = np.arange(len(values), dtype=float)
    years = np.asarray(years, dtype=float)
    if values.shape != years.shape:
        raise ValueError(
            f"values and years must have the same length ({len(values)} != {len(years)})"
        )
    mask = ~(np.isnan(values) | np.isnan(years))
    order = np.argsort(years[mask], kind='stable')
    return values[mask][order], years[mask][order]


def sens_slope(
    values: Union[np.ndarray, pd.Series, List],
    years: Optional[Union[np.ndarray, pd.Series, List]] = None,
    confidence: float = 0.95
) -> Dict[str, float]:
    """
    Theil-Sen slope estimate with confidence interval.

    Args:
        values: Annual values
        years: Year of each value (defaults to consecutive integers), so
            missing years do not distort the slope
        confidence: Confidence level of the slope interval

    Returns:
        Dictionary with 'slope', 'intercept', 'slope_lower', 'slope_upper'
    """
    v, t = _clean_series(values, years)
    if len(v) < 2:
        raise ValueError("Need at least two valid values for a slope")
    if np.unique(t).size < 2:
        raise ValueError("Need at least two distinct years for a slope")

    slope, intercept, lower, upper = theilslopes(v, t, confidence)
    return {
        'slope': float(slope),
        'intercept': float(intercept),
        'slope_lower': float(lower),
        'slope_upper': float(upper),
    }


def mann_kendall(
    values: Union[np.ndarray, pd.Series, List],
    alpha: float = 0.05,
    method: str = 'original'
) -> Dict[str, Union[float, str, bool]]:
    """
    Mann-Kendall trend test.

    Args:
        values: Series in time order (NaN are dropped)
        alpha: Significance level
        method: 'original', 'hamed_rao', 'yue_wang', 'prewhitening' or
            'trend_free_prewhitening'

    Returns:
        Dictionary with 'trend', 'significant', 'p_value', 'z', 'tau', 's', 'var_s'
    """
    if method not in MK_METHODS:
        raise ValueError(
            f"Unknown Mann-Kendall method: {method}. Available: {', '.join(MK_METHODS)}"
        )
    v = np.asarray(values, dtype=float)
    v = v[~np.isnan(v)]
    if len(v) < 3:
        raise ValueError(f"Need at least 3 valid values for a Mann-Kendall test, got {len(v)}")

    result = MK_METHODS[method](v, alpha=alpha)
    return {
        'trend': result.trend,
        'significant': bool(result.h),
        'p_value': float(result.p),
        'z': float(result.z),
        'tau': float(result.Tau),
        's': float(result.s),
        'var_s': float(result.var_s),
    }


def _insufficient(variable: str, v: np.ndarray, t: np.ndarray, method: str) -> TrendResult:
    return TrendResult(
        variable=variable,
        n=len(v),
        start_year=int(t.min()) if len(t) else None,
        end_year=int(t.max()) if len(t) else None,
        slope=np.nan, intercept=np.nan, slope_lower=np.nan, slope_upper=np.nan,
        tau=np.nan, p_value=np.nan, z=np.nan,
        trend='insufficient data',
        significant=False,
        percent_change=np.nan,
        method=method
    )


def analyze_trend(
    values: Union[np.ndarray, pd.Series, List],
    years: Optional[Union[np.ndarray, pd.Series, List]] = None,
    variable: str = 'value',
    alpha: float = 0.05,
    min_years: int = 5,
    method: str = 'original'
) -> TrendResult:
    """
    Sen's slope plus Mann-Kendall test for one annual series.

    Args:
        values: Annual values
        years: Year of each value
        variable: Name recorded in the result
        alpha: Significance level
        min_years: Minimum number of valid years; shorter series give a
            result with trend 'insufficient data'
        method: Mann-Kendall variant (see mann_kendall)

    Returns:
        TrendResult
    """
    v, t = _clean_series(values, years)
    if len(v) < max(min_years, 3) or np.unique(t).size < 2:
        warnings.warn(
            f"{variable}: only {len(v)} valid years (minimum {min_years}), trend not tested"
        )
        return _insufficient(variable, v, t, method)

    slope = sens_slope(v, t, confidence=1 - alpha)
    test = mann_kendall(v, alpha=alpha, method=method)

    median = np.median(v)
    percent_change = slope['slope'] / abs(median) * 100 if median != 0 else np.nan

    return TrendResult(
        variable=variable,
        n=len(v),
        start_year=int(t.min()),
        end_year=int(t.max()),
        slope=slope['slope'],
        intercept=slope['intercept'],
        slope_lower=slope['slope_lower'],
        slope_upper=slope['slope_upper'],
        tau=test['tau'],
        p_value=test['p_value'],
        z=test['z'],
        trend=test['trend'],
        significant=test['significant'],
        percent_change=percent_change,
        method=method
    )


def seasonal_kendall(
    monthly: pd.Series,
    period: int = 12,
    alpha: float = 0.05
) -> Dict[str, Union[float, str, bool]]:
    """
    Seasonal Kendall test on a monthly series.

    The series is padded to whole years starting in January so each
    position in the cycle always refers to the same month. pymannkendall
    drops whole years that contain a missing month.

    Args:
        monthly: Monthly values indexed by month-start dates
        period: Number of seasons per year
        alpha: Significance level

    Returns:
        Dictionary with 'trend', 'significant', 'p_value', 'z', 'tau' and
        'slope' (seasonal Sen's slope per year)
    """
    if not isinstance(monthly.index, pd.DatetimeIndex):
        raise ValueError("Monthly series must be indexed by dates")
    monthly = monthly.dropna()
    if monthly.index.year.nunique() < 3:
        raise ValueError("Need at least 3 years of monthly data for a seasonal test")

    start = pd.Timestamp(year=monthly.index.year.min(), month=1, day=1)
    end = pd.Timestamp(year=monthly.index.year.max(), month=12, day=1)
    full = monthly.reindex(pd.date_range(start, end, freq='MS'))

    result = mk.seasonal_test(full.to_numpy(), period=period, alpha=alpha)
    return {
        'trend': result.trend,
        'significant': bool(result.h),
        'p_value': float(result.p),
        'z': float(result.z),
        'tau': float(result.Tau),
        'slope': float(result.slope),
    }


def site_trends(
    annual: pd.DataFrame,
    variables: Optional[List[str]] = None,
    config: Optional[AnalysisConfig] = None,
    site_id: Optional[str] = None
) -> pd.DataFrame:
    """
    Trend tests for several annual variables of one site.

    Args:
        annual: Annual table with a 'year' column
        variables: Columns to test (default: config.trend_variables present
            in the table)
        config: Analysis settings (alpha, min_years, Mann-Kendall method)
        site_id: Recorded in each result

    Returns:
        DataFrame with one row per variable
    """
    config = config or AnalysisConfig()
    if 'year' not in annual.columns:
        raise ValueError("Annual table must have a 'year' column")
    if variables is None:
        variables = [v for v in config.trend_variables if v in annual.columns]

    rows = []
    for variable in variables:
        if variable not in annual.columns:
            warnings.warn(f"Variable '{variable}' not in annual table, skipped")
            continue
        result = analyze_trend(
            annual[variable].to_numpy(),
            annual['year'].to_numpy(),
            variable=variable,
            alpha=config.alpha,
            min_years=config.min_years,
            method=config.mk_method
        )
        result.site_id = site_id
        rows.append(result.to_dict())

    return pd.DataFrame(rows)


def classify_trends(
    summary: pd.DataFrame,
    alpha: Optional[float] = None
) -> pd.DataFrame:
    """
    Count significant increases and decreases per variable across sites.

    Args:
        summary: Table of TrendResult rows (as from site_trends or a batch)
        alpha: Re-threshold p-values at this level instead of using the
            stored 'significant' flag

    Returns:
        DataFrame indexed by variable with counts and percentages
    """
    if summary.empty:
        return pd.DataFrame(columns=['increasing', 'decreasing', 'no_trend',
                                     'insufficient', 'n_tested'])

    df = summary.copy()
    tested = df['trend'] != 'insufficient data'
    significant = df['significant'].astype(bool) if alpha is None else (df['p_value'] <= alpha)
    significant &= tested

    df['direction'] = 'no_trend'
    df.loc[significant & (df['slope'] > 0), 'direction'] = 'increasing'
    df.loc[significant & (df['slope'] < 0), 'direction'] = 'decreasing'
    df.loc[~tested, 'direction'] = 'insufficient'

    counts = pd.crosstab(df['variable'], df['direction'])
    for col in ['increasing', 'decreasing', 'no_trend', 'insufficient']:
        if col not in counts.columns:
            counts[col] = 0
    counts = counts[['increasing', 'decreasing', 'no_trend', 'insufficient']]
    counts['n_tested'] = counts[['increasing', 'decreasing', 'no_trend']].sum(axis=1)

    with np.errstate(invalid='ignore', divide='ignore'):
        counts['pct_increasing'] = counts['increasing'] / counts['n_tested'] * 100
        counts['pct_decreasing'] = counts['decreasing'] / counts['n_tested'] * 100
    counts.columns.name = None
    return counts

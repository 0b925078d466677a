"""
Gap filling and normalization of daily metabolism series.

Daily GPP estimates are missing whenever the metabolism model failed or
the sensors were down. Short gaps are bridged by linear interpolation;
gaps longer than a maximum length are left missing so that annual and
seasonal summaries are not built from invented data.
"""

import calendar
import numpy as np
import pandas as pd
from typing import List, Optional, Union
import warnings

from .data_structures import SiteTimeSeries


def regularize_daily(site: SiteTimeSeries) -> SiteTimeSeries:
    """
    Reindex a site onto a complete daily calendar.

    Days absent from the record are inserted with NaN values, so that gaps
    become explicit before filling.

    Args:
        site: Site with a daily DatetimeIndex

    Returns:
        New SiteTimeSeries spanning first to last date with one row per day
    """
    if len(site) == 0:
        return site.copy()

    full_index = pd.date_range(site.start, site.end, freq='D', name='date')
    data = site.data.reindex(full_index)
    result = site.with_data(data)
    result.units.update(site.units)
    result.categories.update(site.categories)
    return result


def _nan_runs(series: pd.Series) -> pd.DataFrame:
    isna = series.isna().to_numpy()
    if not isna.any():
        return pd.DataFrame(columns=['start_pos', 'end_pos', 'length'])

    # Boundaries of consecutive NaN blocks
    padded = np.concatenate([[False], isna, [False]])
    edges = np.diff(padded.astype(int))
    starts = np.where(edges == 1)[0]
    ends = np.where(edges == -1)[0] - 1

    return pd.DataFrame({
        'start_pos': starts,
        'end_pos': ends,
        'length': ends - starts + 1
    })


def find_gaps(series: pd.Series) -> pd.DataFrame:
    """
    List the runs of missing values in a daily series.

    Args:
        series: Daily series indexed by date

    Returns:
        DataFrame with one row per gap: start, end, length (days) and
        interior (True when valid data exist on both sides)
    """
    runs = _nan_runs(series)
    if runs.empty:
        return pd.DataFrame(columns=['start', 'end', 'length', 'interior'])

    n = len(series)
    return pd.DataFrame({
        'start': series.index[runs['start_pos'].to_numpy()],
        'end': series.index[runs['end_pos'].to_numpy()],
        'length': runs['length'].astype(int).to_numpy(),
        'interior': ((runs['start_pos'] > 0) & (runs['end_pos'] < n - 1)).to_numpy()
    })


def fill_gaps(
    series: pd.Series,
    max_gap: int = 3,
    method: str = 'linear'
) -> pd.Series:
    """
    Fill short gaps in a daily series by linear interpolation.

    Only interior gaps of at most `max_gap` consecutive missing days are
    filled. Longer gaps, and gaps at the start or end of the record, are
    left entirely missing rather than partially filled.

    Args:
        series: Daily series indexed by date (regularize first)
        max_gap: Maximum gap length in days that will be filled
        method: 'linear' (by position) or 'time' (by date)

    Returns:
        Filled copy of the series
    """
    if max_gap < 1:
        raise ValueError(f"max_gap must be >= 1, got {max_gap}")
    if method not in ('linear', 'time'):
        raise ValueError(f"Unknown interpolation method: {method}")

    result = series.astype(float).copy()
    runs = _nan_runs(result)
    if runs.empty or result.notna().sum() < 2:
        return result

    interpolated = result.interpolate(method=method, limit_area='inside')

    n = len(result)
    fill_mask = np.zeros(n, dtype=bool)
    for _, run in runs.iterrows():
        start, end, length = int(run['start_pos']), int(run['end_pos']), int(run['length'])
        if start == 0 or end == n - 1:
            continue
        if length <= max_gap:
            fill_mask[start:end + 1] = True

    result[fill_mask] = interpolated[fill_mask]
    return result


def fill_site(
    site: SiteTimeSeries,
    columns: Optional[List[str]] = None,
    max_gap: int = 3,
    method: str = 'linear'
) -> SiteTimeSeries:
    """
    Regularize a site and gap-fill selected columns.

    For every filled column a boolean '<column>_filled' flag is added that
    marks the days whose value came from interpolation.

    Args:
        site: Site to fill
        columns: Columns to fill (default: 'GPP' only)
        max_gap: Maximum gap length in days
        method: Interpolation method passed to fill_gaps

    Returns:
        New, regularized SiteTimeSeries with filled columns
    """
    columns = columns or ['GPP']
    result = regularize_daily(site)

    for col in columns:
        if col not in result.data.columns:
            warnings.warn(f"Site {site.site_id}: column '{col}' not found, not filled")
            continue
        original = result.data[col]
        filled = fill_gaps(original, max_gap=max_gap, method=method)
        flag = original.isna() & filled.notna()

        result.set_variable(col, filled, units=result.get_column_units(col),
                            category=result.get_column_category(col))
        result.set_variable(f"{col}_filled", flag, units="boolean", category="flag")

    return result


def normalize(
    series: Union[pd.Series, np.ndarray],
    method: str = 'zscore'
) -> Union[pd.Series, np.ndarray]:
    """
    Normalize a series so sites of different size can be compared.

    Args:
        series: Values to normalize (NaN ignored)
        method: 'zscore', 'minmax', 'median' (ratio to the median) or
                'max' (ratio to the maximum)

    Returns:
        Normalized values of the same type as the input
    """
    values = pd.Series(series, dtype=float) if not isinstance(series, pd.Series) else series.astype(float)

    if method == 'zscore':
        sd = values.std()
        if not np.isfinite(sd) or sd == 0:
            out = values * 0.0
        else:
            out = (values - values.mean()) / sd
    elif method == 'minmax':
        span = values.max() - values.min()
        if not np.isfinite(span) or span == 0:
            out = values * 0.0
        else:
            out = (values - values.min()) / span
    elif method == 'median':
        median = values.median()
        if median == 0 or not np.isfinite(median):
            raise ValueError("Cannot normalize by a zero or undefined median")
        out = values / median
    elif method == 'max':
        maximum = values.max()
        if maximum == 0 or not np.isfinite(maximum):
            raise ValueError("Cannot normalize by a zero or undefined maximum")
        out = values / maximum
    else:
        raise ValueError(f"Unknown normalization method: {method}")

    if isinstance(series, pd.Series):
        return out
    return out.to_numpy()


def days_in_year(year: int) -> int:
    return 366 if calendar.isleap(int(year)) else 365


def water_year(index: pd.DatetimeIndex, water_year_start_month: int = 1) -> np.ndarray:
    """Water year of each date, labeled by the calendar year in which it ends."""
    index = pd.DatetimeIndex(index)
    if water_year_start_month == 1:
        return np.asarray(index.year)
    return np.where(index.month >= water_year_start_month, index.year + 1, index.year)


def period_length(period: int, water_year_start_month: int) -> int:
    if water_year_start_month == 1:
        return days_in_year(period)
    start = pd.Timestamp(year=period - 1, month=water_year_start_month, day=1)
    end = pd.Timestamp(year=period, month=water_year_start_month, day=1)
    return (end - start).days


def coverage(
    series: pd.Series,
    start: Optional[Union[str, pd.Timestamp]] = None,
    end: Optional[Union[str, pd.Timestamp]] = None
) -> float:
    """
    Fraction of days in [start, end] with a valid value.

    Days absent from the index count as missing.
    """
    if start is None:
        start = series.index.min()
    if end is None:
        end = series.index.max()
    if pd.isna(start) or pd.isna(end):
        return 0.0

    start, end = pd.Timestamp(start), pd.Timestamp(end)
    n_days = (end - start).days + 1
    if n_days <= 0:
        return 0.0

    n_valid = series.loc[start:end].notna().sum()
    return float(n_valid) / n_days

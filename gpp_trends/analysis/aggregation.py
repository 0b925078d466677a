"""
Annual and sub-annual aggregation of daily metabolism records.
"""

import numpy as np
import pandas as pd
from typing import Dict, List, Optional, Union
import warnings

from ..core.data_structures import SiteTimeSeries
from ..core.gapfill import period_length, water_year
from ..config import AnalysisConfig


def add_time_columns(
    df: pd.DataFrame,
    water_year_start_month: int = 1
) -> pd.DataFrame:
    """
    Add calendar helper columns derived from the date index.

    Args:
        df: DataFrame indexed by date
        water_year_start_month: First month of the water year; the water
            year is labeled by the calendar year in which it ends
            (month 10 gives the USGS convention)

    Returns:
        Copy with 'year', 'month', 'doy' and 'water_year' columns; when the
        water year is not the calendar year 'water_doy' counts days from
        the water-year start
    """
    out = df.copy()
    index = pd.DatetimeIndex(out.index)
    out['year'] = index.year
    out['month'] = index.month
    out['doy'] = index.dayofyear

    out['water_year'] = water_year(index, water_year_start_month)
    if water_year_start_month == 1:
        out['water_doy'] = index.dayofyear
    else:
        wy_start = pd.to_datetime(pd.DataFrame({
            'year': out['water_year'] - 1,
            'month': water_year_start_month,
            'day': 1
        }))
        out['water_doy'] = (index - pd.DatetimeIndex(wy_start)).days + 1

    return out


def richards_baker_index(q: Union[pd.Series, np.ndarray]) -> float:
    """
    Richards-Baker flashiness index of a daily discharge series.

    Sum of absolute day-to-day changes divided by total discharge.
    Missing days break the sequence of changes.
    """
    q = pd.Series(q, dtype=float).reset_index(drop=True)
    total = q.sum(skipna=True)
    if not np.isfinite(total) or total <= 0:
        return np.nan
    changes = q.diff().abs().sum(skipna=True)
    return float(changes / total)


def annual_summary(
    site: SiteTimeSeries,
    config: Optional[AnalysisConfig] = None,
    gpp_column: str = 'GPP',
    keep_incomplete: bool = False
) -> pd.DataFrame:
    """
    Summarize a processed site record by (water) year.

    Annual GPP is estimated as the mean of valid days multiplied by the
    number of days in the year, so years with scattered missing days are
    not biased low.

    Args:
        site: Processed (gap-filled) site record
        config: Analysis settings (coverage threshold, water year)
        gpp_column: Column holding daily GPP
        keep_incomplete: Keep years below the coverage threshold

    Returns:
        DataFrame with one row per year
    """
    config = config or AnalysisConfig()
    site.check_required_variables([gpp_column])

    df = add_time_columns(site.data, config.water_year_start_month)
    rows = []
    for year, group in df.groupby('water_year'):
        gpp = group[gpp_column]
        n_days = period_length(int(year), config.water_year_start_month)
        n_valid = int(gpp.notna().sum())
        row = {
            'site_id': site.site_id,
            'year': int(year),
            'n_days': n_days,
            'n_valid': n_valid,
            'coverage': n_valid / n_days,
            'gpp_mean': gpp.mean(),
            'gpp_median': gpp.median(),
            'gpp_max': gpp.max(),
            'gpp_sd': gpp.std(),
            'gpp_total': gpp.mean() * n_days if n_valid else np.nan,
        }
        if f'{gpp_column}_filled' in group.columns:
            row['fraction_filled'] = group[f'{gpp_column}_filled'].fillna(False).astype(bool).sum() / max(n_valid, 1)

        if 'ER' in group.columns:
            row['er_mean'] = group['ER'].mean()
            row['er_total'] = group['ER'].mean() * n_days if group['ER'].notna().any() else np.nan
        if 'NEP' in group.columns:
            row['nep_mean'] = group['NEP'].mean()
        if 'temp_water' in group.columns:
            row['temp_mean'] = group['temp_water'].mean()
            row['temp_max'] = group['temp_water'].max()
        if 'light' in group.columns:
            row['light_mean'] = group['light'].mean()
        if 'discharge' in group.columns:
            q = group['discharge']
            q_mean = q.mean()
            row['discharge_mean'] = q_mean
            row['discharge_max'] = q.max()
            row['discharge_cv'] = q.std() / q_mean if q_mean and np.isfinite(q_mean) else np.nan
            row['flashiness'] = richards_baker_index(q)
        rows.append(row)

    annual = pd.DataFrame(rows)
    if annual.empty:
        return annual

    if not keep_incomplete:
        annual = annual[annual['coverage'] >= config.min_year_coverage]
    return annual.reset_index(drop=True)


def monthly_summary(
    site: SiteTimeSeries,
    columns: Optional[List[str]] = None,
    min_coverage: float = 0.5
) -> pd.DataFrame:
    """
    Monthly means with coverage.

    Args:
        site: Processed site record
        columns: Columns to average (default: GPP plus available drivers)
        min_coverage: Months with a smaller fraction of valid GPP days are
            set to NaN

    Returns:
        DataFrame indexed by month start with '<col>' means and 'coverage'
    """
    if columns is None:
        columns = [c for c in ['GPP', 'ER', 'temp_water', 'light', 'discharge']
                   if c in site.data.columns]
    site.check_required_variables(columns)

    data = site.data[columns]
    monthly = data.resample('MS').mean()
    counts = data[columns[0]].resample('MS').count()
    monthly['coverage'] = counts / monthly.index.days_in_month
    monthly.loc[monthly['coverage'] < min_coverage, columns] = np.nan
    monthly.index.name = 'month'
    return monthly


def daily_climatology(
    site: SiteTimeSeries,
    column: str = 'GPP'
) -> pd.DataFrame:
    """
    Long-term mean seasonal cycle of a column by day of year.

    Returns:
        DataFrame indexed by 'doy' (1-366) with mean, median, q10, q90 and n
    """
    site.check_required_variables([column])
    values = site.data[column]
    grouped = values.groupby(values.index.dayofyear)

    clim = pd.DataFrame({
        'mean': grouped.mean(),
        'median': grouped.median(),
        'q10': grouped.quantile(0.1),
        'q90': grouped.quantile(0.9),
        'n': grouped.count(),
    })
    clim.index.name = 'doy'
    return clim.reindex(range(1, 367))


def annual_summaries(
    sites: Dict[str, SiteTimeSeries],
    config: Optional[AnalysisConfig] = None,
    metadata: Optional[pd.DataFrame] = None,
    keep_incomplete: bool = False
) -> pd.DataFrame:
    """
    Annual summaries for many sites in one long table.

    Args:
        sites: Processed sites keyed by site id
        config: Analysis settings
        metadata: Optional site table indexed by site_id, joined as columns
        keep_incomplete: Keep years below the coverage threshold

    Returns:
        Long DataFrame with one row per site-year
    """
    config = config or AnalysisConfig()
    frames = []
    for site_id, site in sites.items():
        try:
            frames.append(annual_summary(site, config, keep_incomplete=keep_incomplete))
        except ValueError as e:
            warnings.warn(f"Site {site_id}: annual summary skipped ({e})")

    frames = [f for f in frames if not f.empty]
    if not frames:
        return pd.DataFrame(columns=['site_id', 'year'])

    annual = pd.concat(frames, ignore_index=True)
    if metadata is not None and not metadata.empty:
        meta = metadata.copy()
        meta.index = meta.index.astype(str)
        overlap = [c for c in meta.columns if c in annual.columns]
        annual = annual.merge(meta.drop(columns=overlap), left_on='site_id',
                              right_index=True, how='left')
    return annual


def site_long_term_means(annual: pd.DataFrame, columns: Optional[List[str]] = None) -> pd.DataFrame:
    """Mean of each annual column per site, with the number of years."""
    if annual.empty:
        return pd.DataFrame()
    if columns is None:
        columns = [c for c in annual.select_dtypes(include=[np.number]).columns
                   if c not in ('year', 'n_days', 'n_valid')]
    grouped = annual.groupby('site_id')
    means = grouped[columns].mean()
    means['n_years'] = grouped['year'].nunique()
    means['first_year'] = grouped['year'].min()
    means['last_year'] = grouped['year'].max()
    return means

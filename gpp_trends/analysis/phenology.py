"""
Quantile-based phenology of river GPP.

The timing of productivity within a year is described by the days on which
cumulative GPP passes fixed fractions of the annual total, by the timing and
size of the (smoothed) peak, by a GPP-weighted density over day of year, and
by a Gaussian seasonal curve fitted with lmfit.
"""

import numpy as np
import pandas as pd
from typing import Dict, List, Optional, Sequence, Union
from scipy.stats import gaussian_kde
from lmfit import Model
import warnings

from ..core.data_structures import SiteTimeSeries
from ..config import AnalysisConfig, quantile_label
from .aggregation import add_time_columns, period_length


def _valid_pairs(values, doy):
    values = np.asarray(values, dtype=float)
    doy = np.asarray(doy, dtype=float)
    if values.shape != doy.shape:
        raise ValueError(
            f"values and doy must have the same length ({len(values)} != {len(doy)})"
        )
    mask = ~(np.isnan(values) | np.isnan(doy))
    order = np.argsort(doy[mask], kind='stable')
    return values[mask][order], doy[mask][order]


def cumulative_quantile_dates(
    values: Union[np.ndarray, pd.Series],
    doy: Union[np.ndarray, pd.Series],
    quantiles: Sequence[float] = (0.1, 0.25, 0.5, 0.75, 0.9)
) -> Dict[float, float]:
    """
    Day of year at which cumulative GPP first reaches each fraction of the total.

    Negative values are treated as zero so the cumulative curve is
    non-decreasing.

    Args:
        values: Daily GPP
        doy: Day of year (or day of water year) for each value
        quantiles: Fractions of the annual total in (0, 1)

    Returns:
        Dictionary mapping each quantile to a day of year (NaN when there is
        no positive GPP)
    """
    v, d = _valid_pairs(values, doy)
    if any(q <= 0 or q >= 1 for q in quantiles):
        raise ValueError(f"Quantiles must lie in (0, 1), got {list(quantiles)}")

    v = np.clip(v, 0, None)
    if len(v) == 0 or v.sum() <= 0:
        return {q: np.nan for q in quantiles}

    cumulative = np.cumsum(v)
    fraction = cumulative / cumulative[-1]
    idx = np.searchsorted(fraction, np.asarray(quantiles, dtype=float), side='left')
    idx = np.minimum(idx, len(d) - 1)
    return {q: float(d[i]) for q, i in zip(quantiles, idx)}


def peak_timing(
    values: Union[np.ndarray, pd.Series],
    doy: Union[np.ndarray, pd.Series],
    window: int = 7
) -> Dict[str, float]:
    """
    Timing and magnitude of the seasonal GPP peak.

    A centered rolling mean of `window` days is applied first so a single
    noisy day does not define the peak.

    Returns:
        Dictionary with 'peak_doy' and 'peak_gpp' (smoothed value)
    """
    v, d = _valid_pairs(values, doy)
    if len(v) == 0:
        return {'peak_doy': np.nan, 'peak_gpp': np.nan}

    smoothed = pd.Series(v, index=d).rolling(window, center=True, min_periods=1).mean()
    peak_doy = smoothed.idxmax()
    return {'peak_doy': float(peak_doy), 'peak_gpp': float(smoothed.max())}


def seasonal_density(
    values: Union[np.ndarray, pd.Series],
    doy: Union[np.ndarray, pd.Series],
    grid: Optional[np.ndarray] = None,
    bw_method: Optional[Union[str, float]] = None
) -> pd.Series:
    """
    GPP-weighted kernel density of day of year.

    The density shows when in the year productivity is concentrated,
    independent of the annual total.

    Args:
        values: Daily GPP used as weights (negatives treated as zero)
        doy: Day of year for each value
        grid: Days at which to evaluate the density (default 1-366)
        bw_method: Bandwidth passed to scipy.stats.gaussian_kde

    Returns:
        Series of density values indexed by day of year
    """
    if grid is None:
        grid = np.arange(1, 367)
    v, d = _valid_pairs(values, doy)
    v = np.clip(v, 0, None)

    positive = v > 0
    if positive.sum() < 2 or np.unique(d[positive]).size < 2:
        raise ValueError("Need at least two days with positive GPP for a density estimate")

    kde = gaussian_kde(d[positive], bw_method=bw_method, weights=v[positive])
    return pd.Series(kde(grid), index=pd.Index(grid, name='doy'), name='density')


def gaussian_season(
    doy: Union[float, np.ndarray],
    amplitude: float,
    peak_doy: float,
    width: float,
    baseline: float = 0
) -> Union[float, np.ndarray]:
    """
    Gaussian seasonal curve of daily GPP.

    Args:
        doy: Day of year
        amplitude: Peak height above baseline
        peak_doy: Day of the peak
        width: Standard deviation of the curve (days)
        baseline: Off-season GPP

    Returns:
        GPP at each day of year
    """
    return baseline + amplitude * np.exp(-0.5 * ((doy - peak_doy) / width)**2)


def fit_seasonal_curve(
    values: Union[np.ndarray, pd.Series],
    doy: Union[np.ndarray, pd.Series],
    initial_guess: Optional[Dict[str, float]] = None
) -> Dict[str, Union[float, bool, np.ndarray]]:
    """
    Fit a Gaussian seasonal curve to daily GPP.

    Args:
        values: Daily GPP
        doy: Day of year for each value
        initial_guess: Optional starting values for amplitude, peak_doy,
            width and baseline

    Returns:
        Dictionary containing:
            - 'amplitude', 'peak_doy', 'width', 'baseline': fitted values
            - 'r_squared', 'rmse', 'aic', 'bic': fit statistics
            - 'success': whether the optimizer converged
            - 'fitted': model predictions at the input days
    """
    v, d = _valid_pairs(values, doy)
    if len(v) < 5:
        raise ValueError("Insufficient valid data points for fitting (need at least 5)")

    if initial_guess is None:
        peak = peak_timing(v, d)
        baseline = max(float(np.percentile(v, 10)), 0.0)
        initial_guess = {
            'amplitude': max(peak['peak_gpp'] - baseline, 1e-3),
            'peak_doy': peak['peak_doy'],
            'width': max((d.max() - d.min()) / 6, 5.0),
            'baseline': baseline,
        }

    model = Model(gaussian_season)
    params = model.make_params(**initial_guess)
    params['amplitude'].set(min=0)
    params['peak_doy'].set(min=d.min() - 30, max=d.max() + 30)
    params['width'].set(min=1, max=366)
    params['baseline'].set(min=0)

    result = model.fit(v, params, doy=d)

    fitted = result.best_fit
    residuals = v - fitted
    ss_res = np.sum(residuals**2)
    ss_tot = np.sum((v - v.mean())**2)

    return {
        'amplitude': result.params['amplitude'].value,
        'peak_doy': result.params['peak_doy'].value,
        'width': result.params['width'].value,
        'baseline': result.params['baseline'].value,
        'r_squared': 1 - ss_res / ss_tot if ss_tot > 0 else np.nan,
        'rmse': float(np.sqrt(np.mean(residuals**2))),
        'aic': result.aic,
        'bic': result.bic,
        'success': bool(result.success),
        'fitted': fitted,
    }


def phenology_metrics(
    values: Union[np.ndarray, pd.Series],
    doy: Union[np.ndarray, pd.Series],
    quantiles: Sequence[float] = (0.1, 0.25, 0.5, 0.75, 0.9),
    window: int = 7
) -> Dict[str, float]:
    """
    All quantile and peak metrics for one site-year.

    'season_length' spans the outermost quantiles and 'central_breadth' the
    25th to 75th percentile dates (or the next-to-outermost quantiles when
    those are not requested).
    """
    dates = cumulative_quantile_dates(values, doy, quantiles)
    metrics = {quantile_label(q): dates[q] for q in quantiles}
    metrics.update(peak_timing(values, doy, window))

    ordered = sorted(quantiles)
    metrics['season_length'] = dates[ordered[-1]] - dates[ordered[0]]
    if 0.25 in dates and 0.75 in dates:
        metrics['central_breadth'] = dates[0.75] - dates[0.25]
    elif len(ordered) >= 4:
        metrics['central_breadth'] = dates[ordered[-2]] - dates[ordered[1]]
    else:
        metrics['central_breadth'] = np.nan
    return metrics


def annual_phenology(
    site: SiteTimeSeries,
    config: Optional[AnalysisConfig] = None,
    gpp_column: str = 'GPP',
    fit_curve: bool = False
) -> pd.DataFrame:
    """
    Phenology metrics for every sufficiently complete year of a site.

    Args:
        site: Processed (gap-filled) site record
        config: Analysis settings (quantiles, smoothing, coverage)
        gpp_column: Column holding daily GPP
        fit_curve: Also fit the Gaussian seasonal curve for each year

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
        cov = gpp.notna().sum() / n_days
        if cov < config.min_year_coverage:
            continue

        row = {'site_id': site.site_id, 'year': int(year), 'coverage': cov}
        row.update(phenology_metrics(gpp.to_numpy(), group['water_doy'].to_numpy(),
                                     config.phenology_quantiles, config.smoothing_window))
        row['gpp_total'] = gpp.mean() * n_days

        if fit_curve:
            try:
                fit = fit_seasonal_curve(gpp.to_numpy(), group['water_doy'].to_numpy())
                row['fit_peak_doy'] = fit['peak_doy']
                row['fit_width'] = fit['width']
                row['fit_amplitude'] = fit['amplitude']
                row['fit_r_squared'] = fit['r_squared']
            except ValueError as e:
                warnings.warn(f"Site {site.site_id} {year}: seasonal fit failed ({e})")
        rows.append(row)

    return pd.DataFrame(rows)


def phenology_table(
    sites: Dict[str, SiteTimeSeries],
    config: Optional[AnalysisConfig] = None,
    fit_curve: bool = False
) -> pd.DataFrame:
    """annual_phenology for many sites, stacked."""
    config = config or AnalysisConfig()
    frames = []
    for site_id, site in sites.items():
        try:
            frames.append(annual_phenology(site, config, fit_curve=fit_curve))
        except ValueError as e:
            warnings.warn(f"Site {site_id}: phenology skipped ({e})")
    frames = [f for f in frames if not f.empty]
    if not frames:
        return pd.DataFrame(columns=['site_id', 'year'])
    return pd.concat(frames, ignore_index=True)


def period_densities(
    site: SiteTimeSeries,
    periods: List[tuple],
    gpp_column: str = 'GPP',
    bw_method: Optional[Union[str, float]] = None
) -> pd.DataFrame:
    """
    Seasonal density for several multi-year periods (e.g. early vs late).

    Args:
        site: Processed site record
        periods: List of (first_year, last_year) tuples, inclusive
        gpp_column: Column holding daily GPP

    Returns:
        DataFrame indexed by day of year with one density column per period
    """
    site.check_required_variables([gpp_column])
    df = add_time_columns(site.data)
    out = {}
    for first, last in periods:
        subset = df[(df['year'] >= first) & (df['year'] <= last)]
        label = f"{first}-{last}"
        try:
            out[label] = seasonal_density(subset[gpp_column].to_numpy(),
                                          subset['doy'].to_numpy(), bw_method=bw_method)
        except ValueError as e:
            warnings.warn(f"Site {site.site_id} {label}: density skipped ({e})")
    return pd.DataFrame(out)

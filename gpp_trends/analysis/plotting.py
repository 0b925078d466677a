import numpy as np
import matplotlib.pyplot as plt
import seaborn as sns
from typing import Dict, Optional, List, Tuple, Union
import pandas as pd

from ..core.data_structures import SiteTimeSeries
from .trends import TrendResult
from .mixed_models import MixedModelResult


TREND_COLORS = {
    'increasing': '#2166ac',
    'decreasing': '#b2182b',
    'no_trend': '#bdbdbd',
    'insufficient': '#f0f0f0',
}

VARIABLE_LABELS = {
    'gpp_total': 'Annual GPP (g C m$^{-2}$ y$^{-1}$)',
    'gpp_mean': 'Mean daily GPP (g C m$^{-2}$ d$^{-1}$)',
    'gpp_max': 'Max daily GPP (g C m$^{-2}$ d$^{-1}$)',
    'peak_doy': 'Peak day of year',
    'q50_doy': 'Day of 50% cumulative GPP',
    'season_length': 'Season length (days)',
    'temp_mean': 'Mean water temperature (°C)',
    'light_mean': 'Mean light',
    'discharge_mean': 'Mean discharge (m$^3$ s$^{-1}$)',
    'discharge_cv': 'Discharge CV',
    'flashiness': 'Flashiness (RB index)',
}


def setup_plot_style():
    try:
        plt.style.use('seaborn-v0_8-whitegrid')
    except OSError:
        plt.style.use('default')

    sns.set_palette("colorblind")
    plt.rcParams['figure.dpi'] = 100
    plt.rcParams['savefig.dpi'] = 300
    plt.rcParams['font.size'] = 11
    plt.rcParams['axes.labelsize'] = 12
    plt.rcParams['axes.titlesize'] = 13
    plt.rcParams['xtick.labelsize'] = 10
    plt.rcParams['ytick.labelsize'] = 10
    plt.rcParams['legend.fontsize'] = 10
    plt.rcParams['axes.linewidth'] = 1.2
    plt.rcParams['axes.edgecolor'] = 'black'


def _label(variable: str) -> str:
    return VARIABLE_LABELS.get(variable, variable)


def _finish(fig: plt.Figure, save_path: Optional[str]) -> plt.Figure:
    fig.tight_layout()
    if save_path:
        fig.savefig(save_path, dpi=300, bbox_inches='tight')
    return fig


def plot_site_timeseries(
    site: SiteTimeSeries,
    column: str = 'GPP',
    raw_column: Optional[str] = None,
    filled_flag: Optional[str] = None,
    fig_size: Tuple[float, float] = (12, 4),
    ax: Optional[plt.Axes] = None,
    save_path: Optional[str] = None
) -> plt.Figure:
    """
    Daily series of one site with interpolated days highlighted.

    Args:
        site: Processed site record
        column: Column to plot
        raw_column: Optional column with the unscreened values, drawn faintly
        filled_flag: Boolean column marking filled days (default '<column>_filled')
        fig_size: Figure size
        ax: Existing axes to draw on
        save_path: Path to save figure

    Returns:
        Matplotlib figure object
    """
    setup_plot_style()
    site.check_required_variables([column])

    if ax is None:
        fig, ax = plt.subplots(figsize=fig_size)
    else:
        fig = ax.figure

    series = site.data[column]
    if raw_column and raw_column in site.data.columns:
        ax.plot(site.data.index, site.data[raw_column], color='0.7', linewidth=0.6,
                label='Raw estimate', zorder=1)
    ax.plot(series.index, series.values, color='black', linewidth=0.8,
            label='Daily estimate', zorder=2)

    filled_flag = filled_flag or f"{column}_filled"
    if filled_flag in site.data.columns:
        mask = site.data[filled_flag].fillna(False).astype(bool)
        if mask.any():
            ax.scatter(series.index[mask], series[mask], color='#d95f02', s=8,
                       label='Interpolated', zorder=3)

    ax.set_xlabel('Date')
    ax.set_ylabel(f"{column} ({site.get_column_units(column)})")
    ax.set_title(site.site_id, loc='left')
    ax.legend(loc='upper right', frameon=True)
    ax.grid(True, alpha=0.3)

    return _finish(fig, save_path)


def plot_annual_trend(
    annual: pd.DataFrame,
    variable: str = 'gpp_total',
    trend: Optional[TrendResult] = None,
    fig_size: Tuple[float, float] = (6, 4),
    ax: Optional[plt.Axes] = None,
    save_path: Optional[str] = None
) -> plt.Figure:
    """
    Annual values of one site with the Sen's slope line.

    Args:
        annual: Annual table of one site with 'year' and the variable
        variable: Column to plot
        trend: Result of analyze_trend; the slope line is drawn when given
        fig_size: Figure size
        ax: Existing axes to draw on
        save_path: Path to save figure

    Returns:
        Matplotlib figure object
    """
    setup_plot_style()
    if ax is None:
        fig, ax = plt.subplots(figsize=fig_size)
    else:
        fig = ax.figure

    ax.plot(annual['year'], annual[variable], marker='o', color='black',
            linewidth=1, markersize=5, label='Annual value')

    if trend is not None and np.isfinite(trend.slope):
        years = np.array([trend.start_year, trend.end_year], dtype=float)
        fitted = trend.intercept + trend.slope * years
        color = TREND_COLORS['no_trend']
        if trend.significant:
            color = TREND_COLORS['increasing'] if trend.slope > 0 else TREND_COLORS['decreasing']
        ax.plot(years, fitted, color=color, linewidth=2.5,
                label=f"Sen's slope = {trend.slope:.3g} y$^{{-1}}$ (p = {trend.p_value:.3f})")

    ax.set_xlabel('Year')
    ax.set_ylabel(_label(variable))
    if 'site_id' in annual.columns and annual['site_id'].nunique() == 1:
        ax.set_title(str(annual['site_id'].iloc[0]), loc='left')
    ax.legend(loc='best')
    ax.grid(True, alpha=0.3)

    return _finish(fig, save_path)


def plot_trend_summary(
    summary: pd.DataFrame,
    variables: Optional[List[str]] = None,
    fig_size: Optional[Tuple[float, float]] = None,
    save_path: Optional[str] = None
) -> plt.Figure:
    """
    Across-site distribution of percent change per year and trend directions.

    One row of panels per variable: a histogram of percent change per year
    colored by significance, and a bar of direction counts.

    Args:
        summary: Long trend table (BatchResult.summary_df)
        variables: Variables to show (default: all in the table)
        fig_size: Figure size
        save_path: Path to save figure

    Returns:
        Matplotlib figure object
    """
    setup_plot_style()
    df = summary
    if 'success' in df.columns:
        df = df[df['success'] == True]
    df = df[df['trend'] != 'insufficient data']
    if variables is None:
        variables = list(dict.fromkeys(df['variable'].dropna()))
    if not variables:
        raise ValueError("No tested variables to plot")

    n = len(variables)
    fig, axes = plt.subplots(n, 2, figsize=fig_size or (10, 3 * n),
                             gridspec_kw={'width_ratios': [3, 1]}, squeeze=False)

    for row, variable in enumerate(variables):
        sub = df[df['variable'] == variable]
        ax_hist, ax_bar = axes[row]

        sig = sub['significant'].fillna(False).astype(bool)
        pct = sub['percent_change']
        bins = np.histogram_bin_edges(pct.dropna(), bins='auto') if pct.notna().sum() > 1 else 10
        ax_hist.hist([pct[sig].dropna(), pct[~sig].dropna()], bins=bins, stacked=True,
                     color=['#4d4d4d', TREND_COLORS['no_trend']],
                     label=['Significant', 'Not significant'], edgecolor='black')
        ax_hist.axvline(0, color='black', linestyle='--', linewidth=1)
        ax_hist.set_xlabel(f"{_label(variable)}: change (% y$^{{-1}}$)")
        ax_hist.set_ylabel('Sites')
        ax_hist.legend(loc='upper right')

        n_inc = int((sig & (sub['slope'] > 0)).sum())
        n_dec = int((sig & (sub['slope'] < 0)).sum())
        n_none = len(sub) - n_inc - n_dec
        ax_bar.bar(['Inc.', 'Dec.', 'None'], [n_inc, n_dec, n_none],
                   color=[TREND_COLORS['increasing'], TREND_COLORS['decreasing'],
                          TREND_COLORS['no_trend']], edgecolor='black')
        ax_bar.set_ylabel('Sites')

    return _finish(fig, save_path)


def plot_phenology(
    phenology: pd.DataFrame,
    quantile_columns: Optional[List[str]] = None,
    site_id: Optional[str] = None,
    fig_size: Tuple[float, float] = (7, 4),
    save_path: Optional[str] = None
) -> plt.Figure:
    """
    Quantile dates of cumulative GPP per year, with the peak day.

    The outermost quantiles are shaded, inner ones drawn as lines.

    Args:
        phenology: Output of annual_phenology (one or many sites)
        quantile_columns: Quantile date columns (default: all 'q*_doy')
        site_id: Site to plot when the table holds several
        fig_size: Figure size
        save_path: Path to save figure

    Returns:
        Matplotlib figure object
    """
    setup_plot_style()
    df = phenology
    if site_id is not None:
        df = df[df['site_id'] == site_id]
    if df.empty:
        raise ValueError("No phenology rows to plot")
    df = df.sort_values('year')

    if quantile_columns is None:
        quantile_columns = [c for c in df.columns if c.startswith('q') and c.endswith('_doy')]

    fig, ax = plt.subplots(figsize=fig_size)
    if len(quantile_columns) >= 2:
        ax.fill_between(df['year'], df[quantile_columns[0]], df[quantile_columns[-1]],
                        color='#a6dba0', alpha=0.5,
                        label=f"{quantile_columns[0]} to {quantile_columns[-1]}")
    palette = sns.color_palette('Greens_d', max(len(quantile_columns) - 2, 1))
    for color, col in zip(palette, quantile_columns[1:-1]):
        ax.plot(df['year'], df[col], marker='o', markersize=4, color=color, label=col)
    if 'peak_doy' in df.columns:
        ax.plot(df['year'], df['peak_doy'], linestyle='none', marker='*', markersize=10,
                color='#d95f02', label='Peak')

    ax.set_xlabel('Year')
    ax.set_ylabel('Day of year')
    if site_id is not None:
        ax.set_title(site_id, loc='left')
    ax.legend(loc='best', fontsize=8)
    ax.grid(True, alpha=0.3)

    return _finish(fig, save_path)


def plot_seasonal_density(
    densities: pd.DataFrame,
    title: Optional[str] = None,
    fig_size: Tuple[float, float] = (7, 4),
    save_path: Optional[str] = None
) -> plt.Figure:
    """
    GPP-weighted day-of-year densities, one curve per column.

    Args:
        densities: Output of period_densities (index doy, one column per period)
        title: Axes title (typically the site id)

    Returns:
        Matplotlib figure object
    """
    setup_plot_style()
    if densities.empty:
        raise ValueError("No densities to plot")

    fig, ax = plt.subplots(figsize=fig_size)
    palette = sns.color_palette('viridis', len(densities.columns))
    for color, col in zip(palette, densities.columns):
        ax.plot(densities.index, densities[col], color=color, linewidth=2, label=col)
        ax.fill_between(densities.index, densities[col], color=color, alpha=0.15)

    ax.set_xlabel('Day of year')
    ax.set_ylabel('GPP-weighted density')
    ax.set_xlim(1, 366)
    if title:
        ax.set_title(title, loc='left')
    ax.legend(loc='upper right')
    ax.grid(True, alpha=0.3)

    return _finish(fig, save_path)


def plot_mixed_model_coefficients(
    results: Union[MixedModelResult, Dict[str, MixedModelResult]],
    include_intercept: bool = False,
    fig_size: Tuple[float, float] = (6, 4),
    save_path: Optional[str] = None
) -> plt.Figure:
    """
    Forest plot of standardized fixed-effect estimates with confidence intervals.

    Args:
        results: One result or several keyed by model name (offset vertically)
        include_intercept: Also show the intercept

    Returns:
        Matplotlib figure object
    """
    setup_plot_style()
    if isinstance(results, MixedModelResult):
        results = {results.formula or 'model': results}
    if not results:
        raise ValueError("No model results to plot")

    terms = []
    for result in results.values():
        for term in result.coefficients.index:
            if (include_intercept or term != 'Intercept') and term not in terms:
                terms.append(term)
    if not terms:
        raise ValueError("Models have no fixed effects besides the intercept")

    fig, ax = plt.subplots(figsize=fig_size)
    n_models = len(results)
    offsets = np.linspace(-0.2, 0.2, n_models) if n_models > 1 else [0.0]
    palette = sns.color_palette('colorblind', n_models)
    positions = np.arange(len(terms))

    for offset, color, (name, result) in zip(offsets, palette, results.items()):
        coef = result.coefficients.reindex(terms)
        y = positions + offset
        ax.errorbar(coef['estimate'], y,
                    xerr=[coef['estimate'] - coef['ci_lower'], coef['ci_upper'] - coef['estimate']],
                    fmt='o', color=color, capsize=3, label=name)

    ax.axvline(0, color='black', linestyle='--', linewidth=1)
    ax.set_yticks(positions)
    ax.set_yticklabels([_label(t) for t in terms])
    ax.invert_yaxis()
    ax.set_xlabel('Standardized effect')
    if n_models > 1:
        ax.legend(loc='best')
    ax.grid(True, axis='x', alpha=0.3)

    return _finish(fig, save_path)


def plot_driver_relationships(
    annual: pd.DataFrame,
    response: str = 'gpp_total',
    drivers: Optional[List[str]] = None,
    hue: str = 'site_id',
    fig_size: Optional[Tuple[float, float]] = None,
    save_path: Optional[str] = None
) -> plt.Figure:
    """
    Annual response against each driver, colored by site, with a pooled fit.

    Args:
        annual: Long annual table
        response: Response column
        drivers: Driver columns (default: those in VARIABLE_LABELS present)
        hue: Column used for colors

    Returns:
        Matplotlib figure object
    """
    setup_plot_style()
    if drivers is None:
        drivers = [d for d in ['temp_mean', 'light_mean', 'discharge_mean',
                               'discharge_cv', 'flashiness'] if d in annual.columns]
    if not drivers:
        raise ValueError("No driver columns to plot")

    n = len(drivers)
    n_cols = min(n, 3)
    n_rows = int(np.ceil(n / n_cols))
    fig, axes = plt.subplots(n_rows, n_cols, figsize=fig_size or (4 * n_cols, 3.5 * n_rows),
                             squeeze=False)
    axes = axes.flatten()

    show_legend = hue in annual.columns and annual[hue].nunique() <= 10
    for idx, driver in enumerate(drivers):
        ax = axes[idx]
        sns.scatterplot(data=annual, x=driver, y=response,
                        hue=hue if hue in annual.columns else None,
                        ax=ax, s=30, legend=show_legend and idx == 0)
        valid = annual[[driver, response]].dropna()
        if len(valid) > 2:
            sns.regplot(data=valid, x=driver, y=response, scatter=False, ax=ax,
                        color='black', line_kws={'linewidth': 1.5})
        ax.set_xlabel(_label(driver))
        ax.set_ylabel(_label(response))
        ax.grid(True, alpha=0.3)

    for idx in range(n, len(axes)):
        axes[idx].set_visible(False)

    return _finish(fig, save_path)

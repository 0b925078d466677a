import pandas as pd
from typing import Dict, List, Optional, Union, Tuple
from concurrent.futures import ProcessPoolExecutor, as_completed
from tqdm import tqdm
import multiprocessing
import warnings

from ..config import AnalysisConfig
from .trends import TrendResult, analyze_trend


class BatchResult:
    """Container for per-site trend results."""

    def __init__(self):
        self.results: Dict[str, List[TrendResult]] = {}
        self.summary_df: Optional[pd.DataFrame] = None
        self.failed_sites: List[str] = []
        self.warnings: Dict[str, List[str]] = {}

    def add_result(self, site_id: str, results: List[TrendResult]):
        """
        Add the trend results of one site.

        Args:
            site_id: Site identifier
            results: One TrendResult per tested variable
        """
        self.results[site_id] = results

    def add_failure(self, site_id: str, error_msg: str):
        """
        Record a failed site with its error message.

        Note:
            Failed sites are tracked separately and included in the summary
            with success=False.
        """
        self.failed_sites.append(site_id)
        self.warnings.setdefault(site_id, []).append(f"Trend analysis failed: {error_msg}")

    def add_warning(self, site_id: str, warning_msg: str):
        """Add a warning for a site without marking it as failed."""
        self.warnings.setdefault(site_id, []).append(warning_msg)

    def generate_summary(self) -> pd.DataFrame:
        """Generate a long summary table (one row per site and variable)."""
        rows = []
        for site_id, results in self.results.items():
            for result in results:
                row = result.to_dict()
                row['site_id'] = site_id
                row['success'] = True
                rows.append(row)

        for site_id in self.failed_sites:
            rows.append({'site_id': site_id, 'success': False})

        summary = pd.DataFrame(rows)
        if not summary.empty:
            first = ['site_id', 'variable']
            summary = summary[[c for c in first if c in summary.columns] +
                              [c for c in summary.columns if c not in first]]
        self.summary_df = summary
        return self.summary_df

    def get_variable(self, variable: str) -> pd.DataFrame:
        """Successful results for one variable, one row per site."""
        if self.summary_df is None:
            self.generate_summary()
        if self.summary_df.empty or 'variable' not in self.summary_df.columns:
            return pd.DataFrame()
        df = self.summary_df
        return df[(df['success'] == True) & (df['variable'] == variable)].reset_index(drop=True)

    @property
    def n_sites(self) -> int:
        return len(self.results) + len(self.failed_sites)


def process_single_site(
    site_annual: pd.DataFrame,
    site_id: str,
    variables: List[str],
    config: AnalysisConfig
) -> Tuple[str, Union[List[TrendResult], Exception], List[str]]:
    """
    Run trend tests for every variable of one site.

    This function is designed to be used with parallel processing.

    Returns:
        Tuple of (site_id, list of results or the exception, warning messages)

    Raises:
        No exceptions are raised directly; they are returned in the tuple
        so one bad site does not stop a parallel run
    """
    messages = []
    try:
        if 'year' not in site_annual.columns:
            raise ValueError("Annual table must have a 'year' column")
        results = []
        with warnings.catch_warnings(record=True) as caught:
            warnings.simplefilter('always')
            for variable in variables:
                if variable not in site_annual.columns:
                    messages.append(f"Variable '{variable}' not available")
                    continue
                result = analyze_trend(
                    site_annual[variable].to_numpy(),
                    site_annual['year'].to_numpy(),
                    variable=variable,
                    alpha=config.alpha,
                    min_years=config.min_years,
                    method=config.mk_method
                )
                result.site_id = site_id
                results.append(result)
        messages.extend(str(w.message) for w in caught)
        return site_id, results, messages

    except Exception as e:
        return site_id, e, messages


def batch_site_trends(
    annual: pd.DataFrame,
    variables: Optional[List[str]] = None,
    config: Optional[AnalysisConfig] = None,
    n_jobs: Optional[int] = None,
    progress_bar: bool = True
) -> BatchResult:
    """
    Run trend tests for every site in a long annual table.

    Args:
        annual: Long annual table with 'site_id' and 'year' columns
        variables: Columns to test (default: config.trend_variables present)
        config: Analysis settings
        n_jobs: Number of parallel jobs (-1 for all CPUs; default config.n_jobs)
        progress_bar: Show progress bar

    Returns:
        BatchResult object containing all results

    Examples:
        results = batch_site_trends(annual, ['gpp_total', 'peak_doy'], n_jobs=4)
        results.summary_df
    """
    config = config or AnalysisConfig()
    if 'site_id' not in annual.columns:
        raise ValueError("Annual table must have a 'site_id' column")
    if variables is None:
        variables = [v for v in config.trend_variables if v in annual.columns]
    if not variables:
        raise ValueError("No trend variables available in the annual table")

    n_jobs = config.n_jobs if n_jobs is None else n_jobs
    if n_jobs == -1:
        n_jobs = multiprocessing.cpu_count()

    groups = {str(site_id): group.sort_values('year')
              for site_id, group in annual.groupby('site_id')}
    batch_result = BatchResult()

    def _record(site_id, result, messages):
        if isinstance(result, Exception):
            batch_result.add_failure(site_id, str(result))
            return
        batch_result.add_result(site_id, result)
        for msg in messages:
            batch_result.add_warning(site_id, msg)

    if n_jobs == 1:
        iterator = groups.items()
        if progress_bar:
            iterator = tqdm(iterator, desc="Testing site trends", total=len(groups))

        for site_id, site_annual in iterator:
            _record(*process_single_site(site_annual, site_id, variables, config))
    else:
        with ProcessPoolExecutor(max_workers=n_jobs) as executor:
            futures = {
                executor.submit(process_single_site, site_annual, site_id, variables, config): site_id
                for site_id, site_annual in groups.items()
            }

            iterator = as_completed(futures)
            if progress_bar:
                iterator = tqdm(iterator, desc="Testing site trends", total=len(futures))

            for future in iterator:
                site_id = futures[future]
                try:
                    _record(*future.result())
                except Exception as e:
                    batch_result.add_failure(site_id, str(e))

    batch_result.generate_summary()

    print(f"\nTrend analysis complete:")
    print(f"  Total sites: {len(groups)}")
    print(f"  Successful: {len(batch_result.results)}")
    print(f"  Failed: {len(batch_result.failed_sites)}")
    if batch_result.warnings:
        print(f"  Sites with warnings: {len(batch_result.warnings)}")

    return batch_result


def analyze_slope_variability(
    batch_result: BatchResult,
    variables: Optional[List[str]] = None,
    significant_only: bool = False
) -> pd.DataFrame:
    """
    Distribution of Sen's slopes across sites.

    Args:
        batch_result: Results from batch_site_trends
        variables: Variables to summarize (None for all)
        significant_only: Use only significant trends

    Returns:
        DataFrame with mean, median, std, min, max of slopes and of the
        percent change per year, and the number of sites
    """
    if batch_result.summary_df is None:
        batch_result.generate_summary()
    df = batch_result.summary_df
    if df.empty or 'variable' not in df.columns:
        return pd.DataFrame()

    df = df[(df['success'] == True) & (df['trend'] != 'insufficient data')]
    if significant_only:
        df = df[df['significant'].astype(bool)]
    if variables is None:
        variables = list(dict.fromkeys(df['variable'].dropna()))

    stats_data = []
    for variable in variables:
        slopes = df.loc[df['variable'] == variable, 'slope'].dropna()
        pct = df.loc[df['variable'] == variable, 'percent_change'].dropna()
        stats_data.append({
            'variable': variable,
            'mean_slope': slopes.mean(),
            'median_slope': slopes.median(),
            'std_slope': slopes.std(),
            'min_slope': slopes.min(),
            'max_slope': slopes.max(),
            'median_percent_change': pct.median(),
            'n_sites': len(slopes),
        })

    return pd.DataFrame(stats_data)

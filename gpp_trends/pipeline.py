"""
End-to-end workflow and command line entry point.

Reads a directory of site CSVs, preprocesses each site, builds annual and
phenology tables, tests trends per site, fits driver models across sites
and writes tables, figures and a PDF report to an output directory.
"""

import argparse
import logging
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Union

import matplotlib
import matplotlib.pyplot as plt
import pandas as pd

from gpp_trends import __version__
from gpp_trends.config import AnalysisConfig
from gpp_trends.core.data_structures import SiteTimeSeries
from gpp_trends.core.preprocessing import check_site_quality, preprocess_site
from gpp_trends.io.loaders import read_site_directory, read_site_metadata, read_annual_drivers
from gpp_trends.io.export import (
    export_table,
    export_trend_results,
    export_model_results,
    save_figure,
    create_analysis_report,
)
from gpp_trends.analysis.aggregation import annual_summaries, monthly_summary
from gpp_trends.analysis.phenology import phenology_table
from gpp_trends.analysis.trends import seasonal_kendall
from gpp_trends.analysis.batch import BatchResult, batch_site_trends, analyze_slope_variability
from gpp_trends.analysis.mixed_models import (
    MixedModelResult,
    compare_mixed_models,
    driver_correlations,
)
from gpp_trends.analysis.plotting import (
    plot_site_timeseries,
    plot_annual_trend,
    plot_trend_summary,
    plot_phenology,
    plot_mixed_model_coefficients,
    plot_driver_relationships,
)

logger = logging.getLogger(__name__)

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
DRIVER_FILL_COLUMNS = ['temp_water', 'light', 'discharge']


def configure_logging(level: Union[int, str] = logging.INFO) -> None:
    """Send gpp_trends log records to stderr with a timestamped format."""
    if isinstance(level, str):
        name = level
        level = getattr(logging, name.upper(), None)
        if not isinstance(level, int):
            raise ValueError(f"Unknown log level: {name}")
    package_logger = logging.getLogger('gpp_trends')
    package_logger.handlers.clear()
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    package_logger.addHandler(handler)
    package_logger.setLevel(level)
    # Route warnings.warn diagnostics from the library into the log
    logging.captureWarnings(True)


@dataclass
class AnalysisOutputs:
    """Tables, results and written files of one run."""
    config: AnalysisConfig
    quality: pd.DataFrame
    sites: Dict[str, SiteTimeSeries]
    annual: pd.DataFrame
    phenology: pd.DataFrame
    trends: Optional[BatchResult] = None
    seasonal: pd.DataFrame = field(default_factory=pd.DataFrame)
    model_ranking: pd.DataFrame = field(default_factory=pd.DataFrame)
    model_results: Dict[str, MixedModelResult] = field(default_factory=dict)
    files: Dict[str, Path] = field(default_factory=dict)


def _candidate_driver_sets(annual: pd.DataFrame, drivers: List[str]) -> Dict[str, List[str]]:
    available = [d for d in drivers if d in annual.columns and annual[d].notna().any()]
    candidates = {'intercept_only': []}
    for driver in available:
        candidates[driver] = [driver]
    if len(available) > 1:
        candidates['full'] = available
    return candidates


def _seasonal_trends(sites: Dict[str, SiteTimeSeries], config: AnalysisConfig) -> pd.DataFrame:
    rows = []
    for site_id, site in sites.items():
        monthly = monthly_summary(site, columns=['GPP'])['GPP']
        try:
            result = seasonal_kendall(monthly, alpha=config.alpha)
        except ValueError as e:
            logger.info("Site %s: seasonal Kendall skipped (%s)", site_id, e)
            continue
        rows.append(dict(site_id=site_id, **result))
    return pd.DataFrame(rows)


def _write_figures(
    outputs: AnalysisOutputs,
    figure_dir: Path,
    config: AnalysisConfig
) -> List[plt.Figure]:
    """Write the fixed figure set; return the cross-site figures for the report."""
    report_figures = []

    def _save(fig, name, keep=False):
        written = save_figure(fig, figure_dir, name, formats=config.figure_formats,
                              dpi=config.figure_dpi, close=not keep)
        for fmt, path in written.items():
            outputs.files[f"figure_{name}_{fmt}"] = path
        if keep:
            report_figures.append(fig)

    for site_id, site in outputs.sites.items():
        _save(plot_site_timeseries(site, raw_column='GPP_raw'), f"{site_id}_daily_gpp")

        site_annual = outputs.annual[outputs.annual['site_id'] == site_id]
        if site_annual.empty:
            continue
        trend = None
        if outputs.trends is not None:
            for result in outputs.trends.results.get(site_id, []):
                if result.variable == config.model_response:
                    trend = result
        if config.model_response in site_annual.columns:
            _save(plot_annual_trend(site_annual, config.model_response, trend=trend),
                  f"{site_id}_annual_trend")

        site_phen = outputs.phenology[outputs.phenology['site_id'] == site_id]
        if not site_phen.empty:
            _save(plot_phenology(site_phen, quantile_columns=config.quantile_labels,
                                 site_id=site_id), f"{site_id}_phenology")

    if outputs.trends is not None and outputs.trends.results:
        try:
            _save(plot_trend_summary(outputs.trends.summary_df), "trend_summary", keep=True)
        except ValueError as e:
            logger.warning("Trend summary figure skipped: %s", e)

    if outputs.model_results:
        try:
            _save(plot_mixed_model_coefficients(outputs.model_results), "model_coefficients",
                  keep=True)
        except ValueError as e:
            logger.warning("Model coefficient figure skipped: %s", e)

    drivers = [d for d in config.driver_columns if d in outputs.annual.columns]
    if drivers and config.model_response in outputs.annual.columns:
        _save(plot_driver_relationships(outputs.annual, config.model_response, drivers),
              "driver_relationships", keep=True)

    return report_figures


def run_analysis(
    data_dir: Union[str, Path],
    output_dir: Union[str, Path],
    config: Optional[AnalysisConfig] = None,
    metadata_path: Optional[Union[str, Path]] = None,
    drivers_path: Optional[Union[str, Path]] = None,
    make_report: bool = True,
    make_figures: bool = True,
    skip_unusable: bool = True
) -> AnalysisOutputs:
    """
    Run the full GPP trend workflow.

    Args:
        data_dir: Directory with one daily CSV per site
        output_dir: Directory for tables, figures and the report
        config: Analysis settings
        metadata_path: Optional site metadata CSV
        drivers_path: Optional annual driver table joined on site and year
        make_report: Write the multi-page PDF report
        make_figures: Write per-site and cross-site figures
        skip_unusable: Drop sites failing the quality check before analysis

    Returns:
        AnalysisOutputs with every table, result and written file
    """
    config = (config or AnalysisConfig()).validate()
    output_dir = Path(output_dir)
    table_dir = output_dir / 'tables'
    figure_dir = output_dir / 'figures'
    output_dir.mkdir(parents=True, exist_ok=True)

    metadata = None
    exclude = []
    if metadata_path is not None:
        metadata = read_site_metadata(metadata_path)
        exclude.append(Path(metadata_path).name)
        logger.info("Read metadata for %d sites", len(metadata))
    if drivers_path is not None:
        exclude.append(Path(drivers_path).name)

    raw_sites = read_site_directory(data_dir, metadata=metadata, exclude=exclude)
    logger.info("Read %d site files from %s", len(raw_sites), data_dir)
    if not raw_sites:
        raise ValueError(f"No site data found in {data_dir}")

    quality_rows = []
    sites = {}
    for site_id, raw in raw_sites.items():
        quality = check_site_quality(raw, config)
        quality_rows.append({**quality, 'quality_issues': '; '.join(quality['quality_issues'])})
        if skip_unusable and not quality['usable']:
            logger.warning("Site %s skipped: %s", site_id, '; '.join(quality['quality_issues']))
            continue
        fill_columns = [c for c in DRIVER_FILL_COLUMNS if c in raw.data.columns]
        sites[site_id] = preprocess_site(raw, config, fill_columns=fill_columns)
    quality_table = pd.DataFrame(quality_rows)
    logger.info("%d of %d sites passed quality checks", len(sites), len(raw_sites))

    annual = annual_summaries(sites, config, metadata=metadata)
    phenology = phenology_table(sites, config)
    if not phenology.empty and not annual.empty:
        overlap = [c for c in phenology.columns
                   if c in annual.columns and c not in ('site_id', 'year')]
        annual = annual.merge(phenology.drop(columns=overlap), on=['site_id', 'year'], how='left')
    if drivers_path is not None and not annual.empty:
        drivers = read_annual_drivers(drivers_path)
        overlap = [c for c in drivers.columns
                   if c in annual.columns and c not in ('site_id', 'year')]
        annual = annual.merge(drivers.drop(columns=overlap), on=['site_id', 'year'], how='left')
    logger.info("Built %d site-years of annual summaries", len(annual))

    outputs = AnalysisOutputs(config=config, quality=quality_table, sites=sites,
                              annual=annual, phenology=phenology)

    if not annual.empty:
        outputs.trends = batch_site_trends(annual, config=config, n_jobs=config.n_jobs)
        n_sig = int(outputs.trends.summary_df.get('significant', pd.Series(dtype=bool))
                    .fillna(False).astype(bool).sum())
        logger.info("Trend tests done: %d significant site-variable trends", n_sig)
    outputs.seasonal = _seasonal_trends(sites, config)

    if not annual.empty and annual['site_id'].nunique() >= 2:
        candidates = _candidate_driver_sets(annual, config.driver_columns)
        try:
            ranking, results = compare_mixed_models(
                annual, config.model_response, candidates, log_response=config.log_response
            )
            outputs.model_ranking, outputs.model_results = ranking, results
            if not ranking.empty:
                logger.info("Best driver model: %s (AIC %.1f)",
                            ranking['model'].iloc[0], ranking['aic'].iloc[0])
        except ValueError as e:
            logger.warning("Mixed models skipped: %s", e)
    else:
        logger.warning("Mixed models need at least two sites with annual data")

    tables = {
        'site_quality': quality_table,
        'annual_summary': annual,
        'phenology': phenology,
        'seasonal_kendall': outputs.seasonal,
    }
    for name, table in tables.items():
        for fmt, path in export_table(table, table_dir, name, config.table_formats).items():
            outputs.files[f"{name}_{fmt}"] = path

    if outputs.trends is not None:
        outputs.files.update(export_trend_results(outputs.trends, table_dir,
                                                  formats=config.table_formats))
        variability = analyze_slope_variability(outputs.trends)
        outputs.files['slope_variability'] = export_table(
            variability, table_dir, 'slope_variability')['csv']

    if outputs.model_results:
        model_files = export_model_results(outputs.model_results, table_dir,
                                           ranking=outputs.model_ranking)
        outputs.files.update({f"model_{k}": v for k, v in model_files.items()})
        drivers = [d for d in config.driver_columns if d in annual.columns]
        correlations = driver_correlations(annual, [config.model_response] + drivers)
        outputs.files['driver_correlations'] = export_table(
            correlations, table_dir, 'driver_correlations')['csv']

    report_figures = []
    if make_figures:
        report_figures = _write_figures(outputs, figure_dir, config)

    if make_report:
        outputs.files['report'] = create_analysis_report(
            output_dir / 'gpp_trend_report.pdf',
            trend_batch=outputs.trends,
            model_results=outputs.model_results or None,
            model_ranking=outputs.model_ranking if not outputs.model_ranking.empty else None,
            figures=report_figures
        )
    for fig in report_figures:
        plt.close(fig)

    config.to_json(output_dir / 'config_used.json')
    logger.info("Wrote %d output files to %s", len(outputs.files), output_dir)
    return outputs


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='gpp-trends',
        description='Long-term trend analysis of river gross primary productivity.'
    )
    parser.add_argument('--data-dir', required=True, type=Path,
                        help='Directory with one daily metabolism CSV per site')
    parser.add_argument('--output-dir', required=True, type=Path,
                        help='Directory for tables, figures and the report')
    parser.add_argument('--metadata', type=Path, default=None,
                        help='Site metadata CSV with a site_id column')
    parser.add_argument('--drivers', type=Path, default=None,
                        help='Annual driver CSV keyed by site_id and year')
    parser.add_argument('--config', type=Path, default=None,
                        help='JSON file with analysis settings')
    parser.add_argument('--n-jobs', type=int, default=None,
                        help='Parallel jobs for per-site trend tests (-1 for all CPUs)')
    parser.add_argument('--log-level', default='INFO',
                        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'])
    parser.add_argument('--no-report', action='store_true', help='Skip the PDF report')
    parser.add_argument('--no-figures', action='store_true', help='Skip figure files')
    parser.add_argument('--keep-unusable', action='store_true',
                        help='Analyze sites that fail the quality check')
    parser.add_argument('--version', action='version', version=f"%(prog)s {__version__}")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging(args.log_level)
    # Figures are only written to files from the command line
    matplotlib.use('Agg')

    try:
        config = AnalysisConfig.from_json(args.config) if args.config else AnalysisConfig()
        if args.n_jobs is not None:
            config.n_jobs = args.n_jobs
        outputs = run_analysis(
            args.data_dir,
            args.output_dir,
            config=config,
            metadata_path=args.metadata,
            drivers_path=args.drivers,
            make_report=not args.no_report,
            make_figures=not args.no_figures,
            skip_unusable=not args.keep_unusable
        )
    except (FileNotFoundError, ValueError) as e:
        logger.error("%s", e)
        return 1

    logger.info("Analyzed %d sites", len(outputs.sites))
    return 0


if __name__ == '__main__':
    sys.exit(main())

"""
Export functionality for saving analysis results.

This module writes tables (CSV, Excel, JSON), figures (PNG/PDF) and a
multi-page PDF report of a trend analysis.
"""

import json
import pandas as pd
import numpy as np
from typing import Dict, List, Optional, Union, Sequence
from pathlib import Path
from datetime import datetime
import matplotlib.pyplot as plt
from matplotlib.backends.backend_pdf import PdfPages

from ..analysis.batch import BatchResult
from ..analysis.mixed_models import MixedModelResult
from ..analysis.trends import classify_trends


def export_table(
    df: pd.DataFrame,
    output_dir: Union[str, Path],
    base_name: str,
    formats: Sequence[str] = ('csv',),
    index: bool = False
) -> Dict[str, Path]:
    """
    Write a table in one or more formats.

    Args:
        df: Table to write
        output_dir: Directory to save files
        base_name: File name without extension
        formats: Any of 'csv', 'excel', 'json'
        index: Whether to write the index

    Returns:
        Dictionary mapping format to output file path
    """
    unknown = [f for f in formats if f not in ('csv', 'excel', 'json')]
    if unknown:
        raise ValueError(f"Unknown table formats: {', '.join(unknown)}")

    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)
    output_files = {}

    if 'csv' in formats:
        csv_path = output_dir / f"{base_name}.csv"
        df.to_csv(csv_path, index=index)
        output_files['csv'] = csv_path

    if 'excel' in formats:
        excel_path = output_dir / f"{base_name}.xlsx"
        with pd.ExcelWriter(excel_path, engine='openpyxl') as writer:
            df.to_excel(writer, sheet_name=base_name[:31], index=index)
        output_files['excel'] = excel_path

    if 'json' in formats:
        json_path = output_dir / f"{base_name}.json"
        table = df.reset_index() if index else df
        with open(json_path, 'w') as f:
            f.write(table.to_json(orient='records', date_format='iso', indent=2))
        output_files['json'] = json_path

    return output_files


def save_figure(
    fig: plt.Figure,
    output_dir: Union[str, Path],
    base_name: str,
    formats: Sequence[str] = ('png', 'pdf'),
    dpi: int = 300,
    close: bool = True
) -> Dict[str, Path]:
    """
    Save a figure in several formats.

    Returns:
        Dictionary mapping format to output file path
    """
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)

    output_files = {}
    for fmt in formats:
        path = output_dir / f"{base_name}.{fmt}"
        fig.savefig(path, dpi=dpi, bbox_inches='tight')
        output_files[fmt] = path
    if close:
        plt.close(fig)
    return output_files


def export_trend_results(
    batch_result: BatchResult,
    output_dir: Union[str, Path],
    base_name: str = "site_trends",
    formats: Sequence[str] = ('csv', 'excel')
) -> Dict[str, Path]:
    """
    Export batch trend results.

    Args:
        batch_result: BatchResult object to export
        output_dir: Directory to save files
        base_name: Base name for output files
        formats: List of formats for the summary ('csv', 'excel', 'json')

    Returns:
        Dictionary mapping output name to file path
    """
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)

    if batch_result.summary_df is None:
        batch_result.generate_summary()
    summary = batch_result.summary_df

    successful = summary
    if not summary.empty and 'variable' in summary.columns:
        successful = summary[summary['success'] == True]
    directions = classify_trends(successful) if 'variable' in successful.columns else pd.DataFrame()

    output_files = {}

    if 'csv' in formats:
        csv_path = output_dir / f"{base_name}_summary.csv"
        summary.to_csv(csv_path, index=False)
        output_files['summary_csv'] = csv_path

        directions_path = output_dir / f"{base_name}_directions.csv"
        directions.to_csv(directions_path, index=True, index_label='variable')
        output_files['directions_csv'] = directions_path

    if 'json' in formats:
        json_path = output_dir / f"{base_name}_summary.json"
        with open(json_path, 'w') as f:
            f.write(summary.to_json(orient='records', indent=2))
        output_files['summary_json'] = json_path

    if 'excel' in formats:
        excel_path = output_dir / f"{base_name}_summary.xlsx"
        with pd.ExcelWriter(excel_path, engine='openpyxl') as writer:
            summary.to_excel(writer, sheet_name='Summary', index=False)

            if not directions.empty:
                directions.to_excel(writer, sheet_name='Directions', index_label='variable')

            if batch_result.failed_sites:
                failed_df = pd.DataFrame({
                    'site_id': batch_result.failed_sites,
                    'status': 'Failed',
                    'warnings': ['; '.join(batch_result.warnings.get(s, []))
                                 for s in batch_result.failed_sites]
                })
                failed_df.to_excel(writer, sheet_name='Failed_Sites', index=False)

            warned = {s: w for s, w in batch_result.warnings.items()
                      if s not in batch_result.failed_sites}
            if warned:
                warn_df = pd.DataFrame([
                    {'site_id': s, 'warning': msg} for s, msgs in warned.items() for msg in msgs
                ])
                warn_df.to_excel(writer, sheet_name='Warnings', index=False)

        output_files['summary_excel'] = excel_path

    return output_files


def export_model_results(
    results: Dict[str, MixedModelResult],
    output_dir: Union[str, Path],
    base_name: str = "mixed_models",
    ranking: Optional[pd.DataFrame] = None
) -> Dict[str, Path]:
    """
    Export mixed model coefficients, fit statistics and random effects.

    Returns:
        Dictionary mapping output name to file path
    """
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)
    output_files = {}

    coef_frames = []
    for name, result in results.items():
        coef = result.coefficients.reset_index()
        coef.insert(0, 'model', name)
        coef_frames.append(coef)
    if coef_frames:
        coef_path = output_dir / f"{base_name}_coefficients.csv"
        pd.concat(coef_frames, ignore_index=True).to_csv(coef_path, index=False)
        output_files['coefficients'] = coef_path

    if ranking is None:
        ranking = pd.DataFrame([dict(model=name, **r.summary_row()) for name, r in results.items()])
    fit_path = output_dir / f"{base_name}_fit_statistics.csv"
    ranking.to_csv(fit_path, index=False)
    output_files['fit_statistics'] = fit_path

    json_path = output_dir / f"{base_name}.json"
    export_data = {
        name: {
            'formula': r.formula,
            'statistics': r.summary_row(),
            'coefficients': r.coefficients.reset_index().to_dict(orient='records'),
            'random_intercept_var': r.random_intercept_var,
            'residual_var': r.residual_var,
            'random_effects': r.random_effects,
            'scaling': {k: list(v) for k, v in r.scaling.items()},
        }
        for name, r in results.items()
    }
    export_data['metadata'] = {'timestamp': datetime.now().isoformat()}
    with open(json_path, 'w') as f:
        json.dump(export_data, f, indent=2, default=_json_default)
    output_files['json'] = json_path

    return output_files


def _json_default(value):
    if isinstance(value, (np.integer,)):
        return int(value)
    if isinstance(value, (np.floating,)):
        return float(value)
    if isinstance(value, (np.bool_,)):
        return bool(value)
    return str(value)


def create_analysis_report(
    output_path: Union[str, Path],
    trend_batch: Optional[BatchResult] = None,
    model_results: Optional[Dict[str, MixedModelResult]] = None,
    model_ranking: Optional[pd.DataFrame] = None,
    figures: Optional[List[plt.Figure]] = None,
    title: str = "River GPP Trend Analysis",
    include_methods: bool = True
) -> Path:
    """
    Create a multi-page PDF report of the analysis.

    Args:
        output_path: Path for output PDF file
        trend_batch: Per-site trend results
        model_results: Mixed model results keyed by model name
        model_ranking: Output of compare_mixed_models
        figures: Figures appended at the end of the report
        title: Report title
        include_methods: Include a methods page

    Returns:
        Path to created PDF file
    """
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)

    with PdfPages(output_path) as pdf:
        fig = plt.figure(figsize=(8.5, 11))
        fig.text(0.5, 0.7, title, ha='center', size=22, weight='bold')
        fig.text(0.5, 0.6, f"Generated: {datetime.now().strftime('%Y-%m-%d %H:%M')}",
                 ha='center', size=12)

        summary_text = []
        if trend_batch is not None:
            summary_text.append(f"Sites analyzed: {trend_batch.n_sites}")
            summary_text.append(f"Successful: {len(trend_batch.results)}")
            summary_text.append(f"Failed: {len(trend_batch.failed_sites)}")
        if model_results:
            summary_text.append(f"Mixed models fitted: {len(model_results)}")
        fig.text(0.5, 0.4, '\n'.join(summary_text), ha='center', size=14,
                 va='center', multialignment='center')
        pdf.savefig(fig, bbox_inches='tight')
        plt.close(fig)

        if include_methods:
            fig = plt.figure(figsize=(8.5, 11))
            fig.text(0.1, 0.9, "Methods", size=18, weight='bold')
            methods_text = """
Daily GPP estimates were screened for implausible values (negative GPP,
positive ER), gaps of up to a fixed number of days were filled by linear
interpolation, and GPP was converted from oxygen to carbon units using a
photosynthetic quotient.

Annual GPP was estimated from the mean of valid days in years meeting a
minimum coverage. Phenology metrics are the days of year at which
cumulative GPP reaches fixed fractions of the annual total.

Monotonic trends were quantified with Sen's slope and tested with the
Mann-Kendall test. Annual GPP was related to climate and hydrology drivers
with linear mixed-effects models including a random intercept per site;
candidate models were ranked by AIC from maximum-likelihood fits.
            """
            fig.text(0.1, 0.1, methods_text, size=11, va='bottom', multialignment='left')
            pdf.savefig(fig, bbox_inches='tight')
            plt.close(fig)

        if trend_batch is not None:
            _add_trend_summary_page(pdf, trend_batch)

        if model_results:
            _add_model_table_page(pdf, model_results, model_ranking)

        for extra in figures or []:
            pdf.savefig(extra, bbox_inches='tight')

        d = pdf.infodict()
        d['Title'] = title
        d['Subject'] = 'River gross primary productivity trends'
        d['Keywords'] = 'GPP, stream metabolism, Mann-Kendall, mixed models'
        d['CreationDate'] = datetime.now()

    return output_path


def _add_trend_summary_page(pdf: PdfPages, batch_result: BatchResult):
    """Add a table of trend direction counts per variable."""
    if batch_result.summary_df is None:
        batch_result.generate_summary()
    summary = batch_result.summary_df

    fig, ax = plt.subplots(figsize=(8.5, 6))
    ax.axis('off')
    ax.text(0.5, 0.95, "Trend Summary", ha='center', transform=ax.transAxes,
            size=16, weight='bold')

    if summary.empty or 'variable' not in summary.columns:
        ax.text(0.5, 0.5, "No successful trend tests", ha='center', transform=ax.transAxes)
    else:
        counts = classify_trends(summary[summary['success'] == True])
        cell_text = [
            [var, int(r['increasing']), int(r['decreasing']), int(r['no_trend']),
             int(r['insufficient'])]
            for var, r in counts.iterrows()
        ]
        table = ax.table(cellText=cell_text,
                         colLabels=['Variable', 'Increasing', 'Decreasing', 'No trend', 'Too short'],
                         cellLoc='center', loc='center')
        table.auto_set_font_size(False)
        table.set_fontsize(10)
        table.scale(1, 1.8)

    pdf.savefig(fig, bbox_inches='tight')
    plt.close(fig)


def _add_model_table_page(
    pdf: PdfPages,
    results: Dict[str, MixedModelResult],
    ranking: Optional[pd.DataFrame] = None
):
    """Add model comparison and coefficient tables."""
    fig, (ax_top, ax_bottom) = plt.subplots(2, 1, figsize=(8.5, 11))
    for ax in (ax_top, ax_bottom):
        ax.axis('off')

    if ranking is None:
        ranking = pd.DataFrame([dict(model=n, **r.summary_row()) for n, r in results.items()])
        if 'aic' in ranking.columns:
            ranking = ranking.sort_values('aic')
    rank_text = [
        [row['model'], f"{row['aic']:.1f}", f"{row.get('delta_aic', np.nan):.1f}",
         f"{row['r2_marginal']:.2f}", f"{row['r2_conditional']:.2f}"]
        for _, row in ranking.iterrows()
    ]
    ax_top.text(0.5, 1.0, "Model Comparison", ha='center', transform=ax_top.transAxes,
                size=16, weight='bold')
    if rank_text:
        table = ax_top.table(cellText=rank_text,
                             colLabels=['Model', 'AIC', 'ΔAIC', 'R² marg.', 'R² cond.'],
                             cellLoc='center', loc='center')
        table.auto_set_font_size(False)
        table.set_fontsize(10)
        table.scale(1, 1.6)

    best_name = ranking['model'].iloc[0] if len(ranking) else next(iter(results))
    best = results[best_name]
    coef_text = [
        [term, f"{r['estimate']:.3f}", f"[{r['ci_lower']:.3f}, {r['ci_upper']:.3f}]",
         f"{r['p_value']:.3g}"]
        for term, r in best.coefficients.iterrows()
    ]
    ax_bottom.text(0.5, 1.0, f"Coefficients: {best_name}", ha='center',
                   transform=ax_bottom.transAxes, size=14, weight='bold')
    table = ax_bottom.table(cellText=coef_text,
                            colLabels=['Term', 'Estimate', '95% CI', 'p'],
                            cellLoc='center', loc='center')
    table.auto_set_font_size(False)
    table.set_fontsize(10)
    table.scale(1, 1.6)

    pdf.savefig(fig, bbox_inches='tight')
    plt.close(fig)

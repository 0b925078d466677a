"""
Unit tests for export functionality.

Tests the export.py module including:
- Table export
- Trend and model result export
- Figure saving
- Report generation
"""

import pytest
import numpy as np
import pandas as pd
import json
import matplotlib.pyplot as plt
from openpyxl import load_workbook

from gpp_trends.analysis.batch import BatchResult, batch_site_trends
from gpp_trends.analysis.mixed_models import compare_mixed_models
from gpp_trends.io.export import (
    export_table,
    export_trend_results,
    export_model_results,
    save_figure,
    create_analysis_report,
)


@pytest.fixture
def batch(annual_table):
    result = batch_site_trends(annual_table, ['gpp_total', 'peak_doy'], progress_bar=False)
    result.add_failure('site_x', 'no usable years')
    result.generate_summary()
    return result


@pytest.fixture
def models(annual_table):
    rng = np.random.default_rng(3)
    df = annual_table.copy()
    df['temp_mean'] = rng.normal(15, 2, len(df))
    return compare_mixed_models(df, 'gpp_total', {'intercept_only': [], 'temp': ['temp_mean']})


class TestExportTable:
    """Generic tables."""

    def test_all_formats(self, annual_table, tmp_path):
        files = export_table(annual_table, tmp_path / 'out', 'annual',
                             formats=('csv', 'excel', 'json'))
        assert set(files) == {'csv', 'excel', 'json'}
        assert all(path.exists() for path in files.values())

        reloaded = pd.read_csv(files['csv'])
        assert len(reloaded) == len(annual_table)
        with open(files['json']) as f:
            records = json.load(f)
        assert records[0]['site_id'] == 'site_a'

    def test_index_written(self, tmp_path):
        df = pd.DataFrame({'value': [1, 2]}, index=pd.Index(['a', 'b'], name='site_id'))
        files = export_table(df, tmp_path, 'means', index=True)
        assert 'site_id' in pd.read_csv(files['csv']).columns

    def test_unknown_format(self, annual_table, tmp_path):
        with pytest.raises(ValueError, match="parquet"):
            export_table(annual_table, tmp_path, 'annual', formats=('parquet',))


class TestExportResults:
    """Trend and model results."""

    def test_trend_results(self, batch, tmp_path):
        files = export_trend_results(batch, tmp_path, formats=['csv', 'excel', 'json'])

        summary = pd.read_csv(files['summary_csv'])
        assert 'site_x' in summary['site_id'].values
        directions = pd.read_csv(files['directions_csv'], index_col='variable')
        assert directions.loc['gpp_total', 'increasing'] == 3

        workbook = load_workbook(files['summary_excel'])
        assert {'Summary', 'Directions', 'Failed_Sites'} <= set(workbook.sheetnames)
        assert files['summary_json'].exists()

    def test_model_results(self, models, tmp_path):
        ranking, results = models
        files = export_model_results(results, tmp_path, ranking=ranking)

        coef = pd.read_csv(files['coefficients'])
        assert set(coef['model']) == {'intercept_only', 'temp'}
        fit = pd.read_csv(files['fit_statistics'])
        assert 'akaike_weight' in fit.columns
        assert fit['model'].notna().all()
        assert set(fit['model']) == {'intercept_only', 'temp'}
        with open(files['json']) as f:
            data = json.load(f)
        assert data['temp']['formula'] == 'gpp_total ~ temp_mean'
        assert 'temp_mean' in data['temp']['scaling']


class TestFiguresAndReport:
    """Figure files and the PDF report."""

    def test_save_figure(self, tmp_path):
        fig, ax = plt.subplots()
        ax.plot([1, 2], [3, 4])
        files = save_figure(fig, tmp_path / 'figs', 'line', formats=('png', 'pdf'), dpi=50)
        assert files['png'].suffix == '.png'
        assert files['pdf'].exists()
        assert not plt.fignum_exists(fig.number)

    def test_report(self, batch, models, tmp_path):
        ranking, results = models
        fig, ax = plt.subplots()
        ax.plot([1, 2], [1, 2])

        path = create_analysis_report(tmp_path / 'report.pdf', trend_batch=batch,
                                      model_results=results, model_ranking=ranking,
                                      figures=[fig])
        assert path.exists()
        assert path.stat().st_size > 1000
        plt.close(fig)

    def test_minimal_report(self, tmp_path):
        path = create_analysis_report(tmp_path / 'empty.pdf', trend_batch=BatchResult(),
                                      include_methods=False)
        assert path.exists()

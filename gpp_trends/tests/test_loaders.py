"""
Tests for reading site metabolism files.
"""

import pytest
import numpy as np
import pandas as pd
from pathlib import Path

from gpp_trends.io.loaders import (
    standardize_columns,
    read_site_csv,
    read_site_metadata,
    read_site_directory,
    read_annual_drivers,
)


def write_site(path, n_days=10, date_col='Date'):
    df = pd.DataFrame({
        date_col: pd.date_range('2015-06-01', periods=n_days).strftime('%Y-%m-%d'),
        'GPP_daily': np.linspace(1, 5, n_days),
        'ER_daily': -np.linspace(2, 6, n_days),
        'K600_daily': np.full(n_days, 12.0),
        'temp.water': np.full(n_days, 15.0),
        'discharge': np.full(n_days, 3.5),
    })
    df.to_csv(path, index=False)
    return path


class TestStandardizeColumns:
    """Column name mapping."""

    def test_known_names(self):
        df = pd.DataFrame(columns=['solar_date', 'GPP', 'ER_daily_mean', 'Temp.Water', 'other'])
        out = standardize_columns(df)
        assert list(out.columns) == ['date', 'GPP', 'ER', 'temp_water', 'other']

    def test_custom_mapping_and_duplicates(self):
        df = pd.DataFrame({'GPP': [1.0], 'GPP_filled': [2.0], 'Flow': [3.0]})
        out = standardize_columns(df, column_map={'flow': 'discharge'})
        assert list(out.columns) == ['GPP', 'discharge']
        assert out['GPP'].iloc[0] == 1.0


class TestReadSiteCsv:
    """Single site files."""

    def test_read(self, tmp_path):
        path = write_site(tmp_path / 'nwis_01.csv')
        site = read_site_csv(path)

        assert site.site_id == 'nwis_01'
        assert len(site) == 10
        assert {'GPP', 'ER', 'K600', 'temp_water', 'discharge'} <= set(site.data.columns)
        assert site.get_column_units('GPP') == 'g O2 m⁻² d⁻¹'
        assert site.start == pd.Timestamp('2015-06-01')

    def test_site_id_column(self, tmp_path):
        path = tmp_path / 'export.csv'
        pd.DataFrame({'site_id': ['river_x'] * 2, 'date': ['2020-01-01', '2020-01-02'],
                      'GPP': [1.0, 2.0]}).to_csv(path, index=False)
        site = read_site_csv(path)
        assert site.site_id == 'river_x'
        assert 'site_id' not in site.data.columns

    def test_non_numeric_values_coerced(self, tmp_path):
        path = tmp_path / 'site.csv'
        pd.DataFrame({'date': ['2020-01-01', '2020-01-02'],
                      'GPP': ['1.5', 'NA']}).to_csv(path, index=False)
        site = read_site_csv(path)
        assert site['GPP'].iloc[0] == 1.5
        assert np.isnan(site['GPP'].iloc[1])

    def test_bad_dates_dropped(self, tmp_path):
        path = tmp_path / 'site.csv'
        pd.DataFrame({'date': ['2020-01-01', 'not a date', '2020-01-03'],
                      'GPP': [1.0, 2.0, 3.0]}).to_csv(path, index=False)
        with pytest.warns(UserWarning, match="unparseable"):
            site = read_site_csv(path)
        assert len(site) == 2

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            read_site_csv(tmp_path / 'missing.csv')

    def test_no_date_column(self, tmp_path):
        path = tmp_path / 'site.csv'
        pd.DataFrame({'GPP': [1.0, 2.0]}).to_csv(path, index=False)
        with pytest.raises(ValueError, match="No date column"):
            read_site_csv(path)


class TestMetadata:
    """Site metadata tables."""

    def test_read_metadata(self, tmp_path):
        path = tmp_path / 'sites.csv'
        pd.DataFrame({'Site_Name': ['a', 'b'], 'Lat': [45.0, 40.0],
                      'Lon': [-100.0, -90.0]}).to_csv(path, index=False)
        meta = read_site_metadata(path)
        assert meta.index.name == 'site_id'
        assert list(meta.index) == ['a', 'b']
        assert meta.loc['b', 'latitude'] == 40.0

    def test_duplicate_sites(self, tmp_path):
        path = tmp_path / 'sites.csv'
        pd.DataFrame({'site_id': ['a', 'a'], 'lat': [1.0, 2.0]}).to_csv(path, index=False)
        with pytest.raises(ValueError, match="Duplicated"):
            read_site_metadata(path)

    def test_no_site_column(self, tmp_path):
        path = tmp_path / 'sites.csv'
        pd.DataFrame({'name': ['a'], 'lat': [1.0]}).to_csv(path, index=False)
        with pytest.raises(ValueError, match="site_id"):
            read_site_metadata(path)


class TestReadDirectory:
    """Directories of site files."""

    def test_read_directory_with_metadata(self, tmp_path):
        write_site(tmp_path / 'site_b.csv')
        write_site(tmp_path / 'site_a.csv', n_days=5)
        pd.DataFrame({'site_id': ['site_a', 'site_b'], 'lat': [45.0, 46.0]}).to_csv(
            tmp_path / 'metadata.csv', index=False)

        meta = read_site_metadata(tmp_path / 'metadata.csv')
        sites = read_site_directory(tmp_path, metadata=meta, exclude=['metadata.csv'])

        assert list(sites) == ['site_a', 'site_b']
        assert len(sites['site_a']) == 5
        assert sites['site_b'].metadata['latitude'] == 46.0

    def test_empty_directory_warns(self, tmp_path):
        with pytest.warns(UserWarning, match="No site files"):
            assert read_site_directory(tmp_path) == {}

    def test_missing_directory(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            read_site_directory(tmp_path / 'nowhere')


class TestAnnualDrivers:
    """External annual driver tables."""

    def test_read(self, tmp_path):
        path = tmp_path / 'drivers.csv'
        pd.DataFrame({'Site': ['a', 'a', 'b'], 'Year': [2000, 2001, 2000],
                      'precip': [800.0, 900.0, 700.0]}).to_csv(path, index=False)
        drivers = read_annual_drivers(path)
        assert {'site_id', 'year', 'precip'} <= set(drivers.columns)
        assert drivers['year'].dtype.kind == 'i'

    def test_duplicates_rejected(self, tmp_path):
        path = tmp_path / 'drivers.csv'
        pd.DataFrame({'site_id': ['a', 'a'], 'year': [2000, 2000],
                      'precip': [1.0, 2.0]}).to_csv(path, index=False)
        with pytest.raises(ValueError, match="duplicated"):
            read_annual_drivers(path)

    def test_missing_year(self, tmp_path):
        path = tmp_path / 'drivers.csv'
        pd.DataFrame({'site_id': ['a'], 'precip': [1.0]}).to_csv(path, index=False)
        with pytest.raises(ValueError, match="year"):
            read_annual_drivers(path)

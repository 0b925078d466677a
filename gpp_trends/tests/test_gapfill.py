"""
Tests for gap filling, regularization and normalization.
"""

import pytest
import numpy as np
import pandas as pd

from gpp_trends.core.data_structures import SiteTimeSeries
from gpp_trends.core.gapfill import (
    regularize_daily,
    find_gaps,
    fill_gaps,
    fill_site,
    normalize,
    coverage,
    days_in_year,
    water_year,
)


def daily(values, start='2020-01-01'):
    return pd.Series(values, index=pd.date_range(start, periods=len(values), freq='D'),
                     dtype=float)


class TestFillGaps:
    """Linear interpolation limited to short interior gaps."""

    def test_short_gap_filled_long_gap_left(self):
        series = daily([1, np.nan, 3, np.nan, np.nan, np.nan, np.nan, 8])
        filled = fill_gaps(series, max_gap=3)

        assert filled.iloc[1] == pytest.approx(2.0)
        # The 4-day gap is longer than max_gap and stays entirely missing
        assert filled.iloc[3:7].isna().all()
        assert filled.iloc[7] == 8

    def test_gap_at_limit_filled(self):
        filled = fill_gaps(daily([0, np.nan, np.nan, np.nan, 4]), max_gap=3)
        np.testing.assert_allclose(filled.to_numpy(), [0, 1, 2, 3, 4])

    def test_edges_not_extrapolated(self):
        filled = fill_gaps(daily([np.nan, 1, 2, np.nan]), max_gap=3)
        assert np.isnan(filled.iloc[0])
        assert np.isnan(filled.iloc[-1])

    def test_input_not_modified(self):
        series = daily([1, np.nan, 3])
        fill_gaps(series)
        assert np.isnan(series.iloc[1])

    def test_time_method_uses_dates(self):
        series = pd.Series([0.0, np.nan, 3.0],
                           index=pd.to_datetime(['2020-01-01', '2020-01-02', '2020-01-04']))
        filled = fill_gaps(series, method='time')
        assert filled.iloc[1] == pytest.approx(1.0)

    def test_no_gaps(self):
        series = daily([1, 2, 3])
        pd.testing.assert_series_equal(fill_gaps(series), series)

    def test_invalid_arguments(self):
        series = daily([1, np.nan, 3])
        with pytest.raises(ValueError, match="max_gap"):
            fill_gaps(series, max_gap=0)
        with pytest.raises(ValueError, match="interpolation method"):
            fill_gaps(series, method='spline')


class TestFindGaps:
    """Gap inventory."""

    def test_gap_table(self):
        gaps = find_gaps(daily([np.nan, 1, np.nan, np.nan, 2, np.nan]))
        assert list(gaps['length']) == [1, 2, 1]
        assert list(gaps['interior']) == [False, True, False]
        assert gaps['start'].iloc[1] == pd.Timestamp('2020-01-03')
        assert gaps['end'].iloc[1] == pd.Timestamp('2020-01-04')

    def test_no_gaps(self):
        assert find_gaps(daily([1, 2])).empty


class TestSiteFilling:
    """Regularization and filling of whole sites."""

    @pytest.fixture
    def gappy_site(self):
        dates = pd.to_datetime(['2020-01-01', '2020-01-02', '2020-01-04', '2020-01-05',
                                '2020-01-10'])
        df = pd.DataFrame({'GPP': [1.0, 2.0, 4.0, np.nan, 10.0]}, index=dates)
        return SiteTimeSeries(df, site_id='gappy', units={'GPP': 'g O2 m⁻² d⁻¹'})

    def test_regularize_inserts_missing_days(self, gappy_site):
        regular = regularize_daily(gappy_site)
        assert len(regular) == 10
        assert regular['GPP'].isna().sum() == 6
        assert regular.get_column_units('GPP') == 'g O2 m⁻² d⁻¹'

    def test_fill_site_flags_filled_days(self, gappy_site):
        filled = fill_site(gappy_site, max_gap=3)

        assert filled['GPP'].loc['2020-01-03'] == pytest.approx(3.0)
        # Jan 5-9 is a five day gap
        assert filled['GPP'].loc['2020-01-05':'2020-01-09'].isna().all()
        flags = filled['GPP_filled']
        assert flags.loc['2020-01-03']
        assert flags.sum() == 1
        assert filled.get_column_category('GPP_filled') == 'flag'

    def test_fill_site_missing_column_warns(self, gappy_site):
        with pytest.warns(UserWarning, match="ER"):
            fill_site(gappy_site, columns=['GPP', 'ER'])


class TestNormalize:
    """Normalization methods."""

    def test_zscore(self):
        out = normalize(pd.Series([1.0, 2.0, 3.0, np.nan]))
        assert out.mean() == pytest.approx(0.0)
        assert np.isnan(out.iloc[3])

    def test_minmax_array(self):
        out = normalize(np.array([2.0, 4.0, 6.0]), method='minmax')
        assert isinstance(out, np.ndarray)
        np.testing.assert_allclose(out, [0.0, 0.5, 1.0])

    def test_constant_series(self):
        assert (normalize(pd.Series([5.0, 5.0]), method='zscore') == 0).all()

    def test_ratio_methods(self):
        np.testing.assert_allclose(normalize(np.array([1.0, 2.0, 4.0]), 'median'), [0.5, 1, 2])
        np.testing.assert_allclose(normalize(np.array([1.0, 2.0, 4.0]), 'max'), [0.25, 0.5, 1])
        with pytest.raises(ValueError):
            normalize(np.array([0.0, 0.0, 1.0]), 'median')

    def test_unknown_method(self):
        with pytest.raises(ValueError, match="Unknown normalization"):
            normalize(np.array([1.0]), 'rank')


class TestCoverage:
    """Coverage and calendar helpers."""

    def test_absent_days_count_as_missing(self):
        series = pd.Series([1.0, 2.0], index=pd.to_datetime(['2020-01-01', '2020-01-10']))
        assert coverage(series) == pytest.approx(0.2)

    def test_explicit_window(self):
        series = daily([1, np.nan, 3, 4])
        assert coverage(series, '2020-01-01', '2020-01-08') == pytest.approx(3 / 8)

    def test_days_in_year(self):
        assert days_in_year(2020) == 366
        assert days_in_year(2021) == 365
        assert days_in_year(1900) == 365

    def test_water_year(self):
        index = pd.to_datetime(['2019-09-30', '2019-10-01', '2020-06-15'])
        assert water_year(index, 10).tolist() == [2019, 2020, 2020]
        assert water_year(index).tolist() == [2019, 2019, 2020]

"""
Tests for annual and sub-annual aggregation.
"""

import pytest
import numpy as np
import pandas as pd

from gpp_trends.config import AnalysisConfig
from gpp_trends.core.data_structures import SiteTimeSeries
from gpp_trends.analysis.aggregation import (
    add_time_columns,
    period_length,
    richards_baker_index,
    annual_summary,
    annual_summaries,
    monthly_summary,
    daily_climatology,
    site_long_term_means,
)


def constant_site(start, end, value=2.0, site_id='const', **extra):
    dates = pd.date_range(start, end, freq='D')
    data = {'GPP': np.full(len(dates), value)}
    data.update({k: np.full(len(dates), v) for k, v in extra.items()})
    return SiteTimeSeries(pd.DataFrame(data, index=dates), site_id=site_id)


class TestTimeColumns:
    """Calendar and water-year helpers."""

    def test_calendar_year(self):
        df = pd.DataFrame({'x': [1, 2]}, index=pd.to_datetime(['2020-03-01', '2021-12-31']))
        out = add_time_columns(df)
        assert out['year'].tolist() == [2020, 2021]
        assert out['doy'].tolist() == [61, 365]
        assert out['water_year'].tolist() == [2020, 2021]
        assert 'year' not in df.columns

    def test_october_water_year(self):
        df = pd.DataFrame({'x': [1, 2, 3]},
                          index=pd.to_datetime(['2020-10-01', '2021-09-30', '2021-10-01']))
        out = add_time_columns(df, water_year_start_month=10)
        assert out['water_year'].tolist() == [2021, 2021, 2022]
        assert out['water_doy'].tolist() == [1, 365, 1]

    def test_period_length(self):
        assert period_length(2020, 1) == 366
        assert period_length(2021, 1) == 365
        # Water year 2020 runs Oct 2019 - Sep 2020 and contains Feb 29
        assert period_length(2020, 10) == 366
        assert period_length(2021, 10) == 365


class TestFlashiness:
    """Richards-Baker index."""

    def test_known_value(self):
        assert richards_baker_index(np.array([1.0, 2.0, 1.0, 2.0])) == pytest.approx(0.5)

    def test_constant_flow(self):
        assert richards_baker_index(pd.Series([3.0, 3.0, 3.0])) == 0.0

    def test_zero_flow(self):
        assert np.isnan(richards_baker_index(np.zeros(4)))


class TestAnnualSummary:
    """Per-year summaries of one site."""

    def test_totals_scale_with_year_length(self):
        site = constant_site('2019-01-01', '2020-12-31')
        annual = annual_summary(site)

        assert annual['year'].tolist() == [2019, 2020]
        assert annual['gpp_total'].tolist() == pytest.approx([730.0, 732.0])
        assert annual['coverage'].tolist() == pytest.approx([1.0, 1.0])
        assert (annual['site_id'] == 'const').all()

    def test_missing_days_do_not_bias_total(self):
        site = constant_site('2019-01-01', '2019-12-31')
        site.data.iloc[::4, 0] = np.nan
        annual = annual_summary(site)
        assert annual['gpp_total'].iloc[0] == pytest.approx(730.0)
        assert annual['coverage'].iloc[0] < 1.0

    def test_incomplete_year_dropped(self):
        site = constant_site('2019-01-01', '2020-02-15')
        assert annual_summary(site)['year'].tolist() == [2019]
        kept = annual_summary(site, keep_incomplete=True)
        assert kept['year'].tolist() == [2019, 2020]
        assert kept['coverage'].iloc[1] == pytest.approx(46 / 366)

    def test_driver_columns(self):
        site = constant_site('2019-01-01', '2019-12-31', temp_water=10.0, light=300.0,
                             discharge=5.0, ER=-3.0)
        row = annual_summary(site).iloc[0]
        assert row['temp_mean'] == pytest.approx(10.0)
        assert row['light_mean'] == pytest.approx(300.0)
        assert row['discharge_mean'] == pytest.approx(5.0)
        assert row['discharge_cv'] == pytest.approx(0.0)
        assert row['flashiness'] == pytest.approx(0.0)
        assert row['er_total'] == pytest.approx(-3.0 * 365)

    def test_water_year(self):
        site = constant_site('2019-10-01', '2021-09-30')
        annual = annual_summary(site, AnalysisConfig(water_year_start_month=10))
        assert annual['year'].tolist() == [2020, 2021]
        assert annual['n_days'].tolist() == [366, 365]

    def test_fraction_filled(self, seasonal_site):
        from gpp_trends.core.preprocessing import preprocess_site
        seasonal_site.data.iloc[100:102, 0] = np.nan
        annual = annual_summary(preprocess_site(seasonal_site))
        assert annual['fraction_filled'].iloc[0] == pytest.approx(2 / 365)
        assert annual['fraction_filled'].iloc[1:].sum() == 0

    def test_requires_gpp(self):
        site = SiteTimeSeries(pd.DataFrame({'ER': [1.0]},
                                           index=pd.to_datetime(['2020-01-01'])))
        with pytest.raises(ValueError):
            annual_summary(site)


class TestSubAnnual:
    """Monthly summaries and climatology."""

    def test_monthly_summary(self):
        site = constant_site('2020-01-01', '2020-03-31')
        site.data.loc['2020-02-01':'2020-02-20', 'GPP'] = np.nan
        monthly = monthly_summary(site)

        assert monthly.index.name == 'month'
        assert len(monthly) == 3
        assert monthly['coverage'].iloc[0] == pytest.approx(1.0)
        # February has 9 of 29 days and falls below the 50 % threshold
        assert np.isnan(monthly['GPP'].iloc[1])
        assert monthly['GPP'].iloc[2] == pytest.approx(2.0)

    def test_daily_climatology(self, seasonal_site):
        clim = daily_climatology(seasonal_site)
        assert list(clim.index) == list(range(1, 367))
        assert clim.loc[190, 'mean'] > clim.loc[20, 'mean']
        assert clim.loc[1, 'n'] == 6
        assert (clim['q10'] <= clim['q90']).all()


class TestMultiSite:
    """Long tables for several sites."""

    def test_annual_summaries_with_metadata(self):
        sites = {
            'a': constant_site('2019-01-01', '2020-12-31', site_id='a'),
            'b': constant_site('2019-01-01', '2019-12-31', value=4.0, site_id='b'),
        }
        metadata = pd.DataFrame({'latitude': [45.0, 30.0]},
                                index=pd.Index(['a', 'b'], name='site_id'))
        annual = annual_summaries(sites, metadata=metadata)

        assert len(annual) == 3
        assert annual.loc[annual['site_id'] == 'b', 'latitude'].iloc[0] == 30.0

    def test_site_without_gpp_skipped(self):
        sites = {
            'a': constant_site('2019-01-01', '2019-12-31', site_id='a'),
            'x': SiteTimeSeries(pd.DataFrame({'ER': [1.0]}, index=pd.to_datetime(['2019-01-01'])),
                                site_id='x'),
        }
        with pytest.warns(UserWarning, match="Site x"):
            annual = annual_summaries(sites)
        assert annual['site_id'].unique().tolist() == ['a']

    def test_empty(self):
        annual = annual_summaries({})
        assert annual.empty
        assert list(annual.columns) == ['site_id', 'year']

    def test_long_term_means(self):
        sites = {
            'a': constant_site('2019-01-01', '2020-12-31', site_id='a'),
            'b': constant_site('2019-01-01', '2019-12-31', value=4.0, site_id='b'),
        }
        means = site_long_term_means(annual_summaries(sites), columns=['gpp_mean'])
        assert means.loc['a', 'n_years'] == 2
        assert means.loc['b', 'gpp_mean'] == pytest.approx(4.0)
        assert means.loc['a', 'first_year'] == 2019

"""
Tests for the random-intercept driver models.
"""

import pytest
import numpy as np
import pandas as pd

from gpp_trends.analysis.mixed_models import (
    MixedModelResult,
    standardize_predictors,
    prepare_model_frame,
    fit_mixed_model,
    compare_mixed_models,
    driver_correlations,
    coefficients_table,
)


@pytest.fixture
def driver_annual():
    """8 sites x 10 years; log GPP rises with temperature, not with light."""
    rng = np.random.default_rng(7)
    rows = []
    for i in range(8):
        site_effect = rng.normal(0, 0.3)
        for year in range(2005, 2015):
            temp = rng.normal(15, 3)
            light = rng.normal(300, 50)
            log_gpp = 6.0 + 0.08 * (temp - 15) + site_effect + rng.normal(0, 0.1)
            rows.append({'site_id': f"site_{i}", 'year': year, 'temp_mean': temp,
                         'light_mean': light, 'gpp_total': np.exp(log_gpp)})
    return pd.DataFrame(rows)


class TestModelFrame:
    """Preparation of the modeling table."""

    def test_standardize_predictors(self):
        df = pd.DataFrame({'a': [1.0, 2.0, 3.0], 'b': [5.0, 5.0, 6.0]})
        out, scaling = standardize_predictors(df, ['a'])
        assert out['a'].tolist() == pytest.approx([-1.0, 0.0, 1.0])
        assert scaling['a'] == pytest.approx((2.0, 1.0))
        assert out['b'].tolist() == [5.0, 5.0, 6.0]

    def test_zero_variance(self):
        df = pd.DataFrame({'a': [1.0, 1.0, 1.0]})
        with pytest.raises(ValueError, match="no variance"):
            standardize_predictors(df, ['a'])

    def test_log_and_drop(self, driver_annual):
        driver_annual.loc[0, 'temp_mean'] = np.nan
        driver_annual.loc[1, 'gpp_total'] = -5.0
        with pytest.warns(UserWarning, match="non-positive"):
            frame, scaling = prepare_model_frame(driver_annual, 'gpp_total', ['temp_mean'])
        assert len(frame) == len(driver_annual) - 2
        assert frame['gpp_total'].max() < 10
        assert frame['temp_mean'].mean() == pytest.approx(0.0, abs=1e-12)
        assert 'temp_mean' in scaling

    def test_small_groups_dropped(self, driver_annual):
        subset = pd.concat([driver_annual[driver_annual['site_id'] != 'site_0'],
                            driver_annual[driver_annual['site_id'] == 'site_0'].head(1)])
        frame, _ = prepare_model_frame(subset, 'gpp_total', ['temp_mean'])
        assert 'site_0' not in frame['site_id'].values

    def test_missing_columns(self, driver_annual):
        with pytest.raises(ValueError, match="discharge_mean"):
            prepare_model_frame(driver_annual, 'gpp_total', ['discharge_mean'])


class TestFitMixedModel:
    """statsmodels MixedLM fits."""

    def test_recovers_temperature_effect(self, driver_annual):
        frame, scaling = prepare_model_frame(driver_annual, 'gpp_total',
                                             ['temp_mean', 'light_mean'])
        result = fit_mixed_model(frame, 'gpp_total', ['temp_mean', 'light_mean'],
                                 scaling=scaling)

        assert isinstance(result, MixedModelResult)
        coef = result.coefficients
        assert list(coef.index) == ['Intercept', 'temp_mean', 'light_mean']
        assert coef.loc['temp_mean', 'estimate'] > 0
        assert coef.loc['temp_mean', 'p_value'] < 0.001
        assert coef.loc['temp_mean', 'ci_lower'] < coef.loc['temp_mean', 'estimate'] \
            < coef.loc['temp_mean', 'ci_upper']
        assert abs(coef.loc['light_mean', 'estimate']) < coef.loc['temp_mean', 'estimate']

        assert result.n_obs == 80
        assert result.n_groups == 8
        assert result.random_intercept_var > 0
        assert len(result.random_effects) == 8
        assert 0 <= result.r2_marginal <= result.r2_conditional <= 1
        assert np.isfinite(result.aic)
        assert result.formula == 'gpp_total ~ temp_mean + light_mean'
        assert result.scaling['temp_mean'][1] > 0

    def test_intercept_only(self, driver_annual):
        frame, _ = prepare_model_frame(driver_annual, 'gpp_total', [])
        result = fit_mixed_model(frame, 'gpp_total', [])
        assert list(result.coefficients.index) == ['Intercept']
        assert result.r2_marginal == pytest.approx(0.0, abs=1e-8)
        assert result.summary_row()['predictors'] == '1'

    def test_single_group(self, driver_annual):
        one_site = driver_annual[driver_annual['site_id'] == 'site_0']
        with pytest.raises(ValueError, match="at least 2 groups"):
            fit_mixed_model(one_site, 'gpp_total', ['temp_mean'])


class TestModelComparison:
    """AIC ranking of candidate driver sets."""

    def test_compare(self, driver_annual):
        candidates = {
            'intercept_only': [],
            'temp': ['temp_mean'],
            'light': ['light_mean'],
            'full': ['temp_mean', 'light_mean'],
        }
        ranking, results = compare_mixed_models(driver_annual, 'gpp_total', candidates)

        assert set(results) == set(candidates)
        assert ranking['model'].iloc[0] in ('temp', 'full')
        assert ranking['delta_aic'].iloc[0] == 0
        assert ranking['aic'].is_monotonic_increasing
        assert ranking['akaike_weight'].sum() == pytest.approx(1.0)
        assert (ranking['n_obs'] == 80).all()
        assert not any(r.reml for r in results.values())

        intercept_aic = ranking.loc[ranking['model'] == 'intercept_only', 'aic'].iloc[0]
        temp_aic = ranking.loc[ranking['model'] == 'temp', 'aic'].iloc[0]
        assert temp_aic < intercept_aic - 10

    def test_no_candidates(self, driver_annual):
        with pytest.raises(ValueError):
            compare_mixed_models(driver_annual, 'gpp_total', {})

    def test_coefficients_table(self, driver_annual):
        _, results = compare_mixed_models(driver_annual, 'gpp_total',
                                          {'temp': ['temp_mean'], 'intercept_only': []})
        table = coefficients_table(results)
        assert set(table['model']) == {'temp', 'intercept_only'}
        assert len(table) == 3
        assert coefficients_table({}).empty


class TestDriverCorrelations:
    """Pairwise driver correlations."""

    def test_pairs(self, driver_annual):
        corr = driver_correlations(driver_annual, ['gpp_total', 'temp_mean', 'light_mean'])
        assert len(corr) == 3
        row = corr[(corr['var1'] == 'gpp_total') & (corr['var2'] == 'temp_mean')].iloc[0]
        assert row['r'] > 0.3
        assert row['n'] == 80

    def test_constant_column(self):
        df = pd.DataFrame({'a': [1.0, 2.0, 3.0, 4.0], 'b': [1.0, 1.0, 1.0, 1.0]})
        corr = driver_correlations(df, ['a', 'b'], method='pearson')
        assert np.isnan(corr['r'].iloc[0])

    def test_invalid(self, driver_annual):
        with pytest.raises(ValueError, match="Unknown correlation method"):
            driver_correlations(driver_annual, ['temp_mean', 'light_mean'], method='kendall')
        with pytest.raises(ValueError):
            driver_correlations(driver_annual, ['temp_mean', 'precip'])

"""
Tests for unit conversions.
"""

import pytest
import numpy as np
import pandas as pd

from gpp_trends.core.data_structures import SiteTimeSeries
from gpp_trends.core.units import (
    o2_to_carbon,
    carbon_to_o2,
    cfs_to_cms,
    cms_to_cfs,
    shortwave_to_par,
    par_to_daily_light,
    convert_column,
    get_conversion,
    MOLAR_MASS_C,
    MOLAR_MASS_O2,
)


class TestMetabolismConversions:
    """Oxygen and carbon fluxes."""

    def test_o2_to_carbon_unit_quotient(self):
        assert o2_to_carbon(1.0, photosynthetic_quotient=1.0) == pytest.approx(
            MOLAR_MASS_C / MOLAR_MASS_O2)

    def test_o2_to_carbon_default_quotient(self):
        # 10 g O2 with PQ 1.25 is about 3 g C
        assert o2_to_carbon(10.0) == pytest.approx(3.003, abs=1e-3)

    def test_inverse(self):
        values = np.array([0.0, 1.5, 7.2])
        np.testing.assert_allclose(carbon_to_o2(o2_to_carbon(values, 1.2), 1.2), values)

    def test_series_preserved(self):
        s = pd.Series([1.0, 2.0], index=pd.date_range('2020-01-01', periods=2))
        out = o2_to_carbon(s)
        assert isinstance(out, pd.Series)
        assert out.index.equals(s.index)

    @pytest.mark.parametrize('pq', [0, -1.0])
    def test_invalid_quotient(self, pq):
        with pytest.raises(ValueError, match="photosynthetic_quotient"):
            o2_to_carbon(1.0, pq)
        with pytest.raises(ValueError):
            carbon_to_o2(1.0, pq)


class TestDriverConversions:
    """Discharge and light."""

    def test_discharge(self):
        assert cfs_to_cms(100.0) == pytest.approx(2.83168)
        assert cms_to_cfs(cfs_to_cms(35.0)) == pytest.approx(35.0)

    def test_light(self):
        assert shortwave_to_par(100.0) == pytest.approx(211.4)
        # 1000 µmol m⁻² s⁻¹ for a whole day
        assert par_to_daily_light(1000.0) == pytest.approx(86.4)


class TestConvertColumn:
    """Conversions applied to a site."""

    @pytest.fixture
    def site(self):
        df = pd.DataFrame({
            'date': pd.date_range('2020-01-01', periods=3),
            'discharge': [10.0, 20.0, 30.0],
            'GPP': [2.0, 4.0, 6.0],
        })
        return SiteTimeSeries(df, units={'discharge': 'ft³ s⁻¹', 'GPP': 'g O2 m⁻² d⁻¹'})

    def test_overwrites_column(self, site):
        convert_column(site, 'discharge', 'cfs_to_cms')
        assert site['discharge'].iloc[0] == pytest.approx(0.283168)
        assert site.get_column_units('discharge') == 'm³ s⁻¹'
        assert site.get_column_category('discharge') == 'converted'

    def test_new_target_with_kwargs(self, site):
        convert_column(site, 'GPP', 'o2_to_carbon', target='GPP_C', photosynthetic_quotient=1.0)
        assert site['GPP'].iloc[0] == 2.0
        assert site['GPP_C'].iloc[0] == pytest.approx(2.0 * MOLAR_MASS_C / MOLAR_MASS_O2)
        assert site.get_column_units('GPP_C') == 'g C m⁻² d⁻¹'

    def test_unknown_conversion(self, site):
        with pytest.raises(ValueError, match="Unknown conversion"):
            convert_column(site, 'GPP', 'furlongs')
        with pytest.raises(ValueError):
            get_conversion('furlongs')

    def test_missing_column(self, site):
        with pytest.raises(ValueError):
            convert_column(site, 'light', 'shortwave_to_par')

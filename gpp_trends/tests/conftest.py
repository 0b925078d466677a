"""
Shared fixtures: synthetic daily metabolism records with a known seasonal
cycle, interannual trend and drivers.
"""

import matplotlib
matplotlib.use('Agg')

import numpy as np
import pandas as pd
import pytest

from gpp_trends.core.data_structures import SiteTimeSeries
from gpp_trends.io.loaders import UNITS


def make_site_frame(
    n_years=6,
    start_year=2010,
    trend=0.0,
    peak_doy=190,
    amplitude=6.0,
    baseline=0.5,
    noise=0.2,
    seed=0
):
    """Daily GPP (g O2) following a Gaussian season that grows by `trend` per year."""
    rng = np.random.default_rng(seed)
    dates = pd.date_range(f"{start_year}-01-01", f"{start_year + n_years - 1}-12-31", freq='D')
    doy = dates.dayofyear.to_numpy()
    year_index = (dates.year - start_year).to_numpy()

    season = np.exp(-0.5 * ((doy - peak_doy) / 40.0)**2)
    gpp = (baseline + amplitude * season) * (1 + trend * year_index)
    gpp = gpp + rng.normal(0, noise, len(dates))

    # Interannual variation in drivers so annual means differ between years
    year_temp = rng.normal(0, 1.0, n_years)[year_index]
    temp = 12 + 8 * np.sin(2 * np.pi * (doy - 110) / 365) + year_temp
    light = 350 + 250 * np.sin(2 * np.pi * (doy - 80) / 365) + rng.normal(0, 20, len(dates))
    discharge = np.exp(rng.normal(1.0, 0.5, len(dates)))

    return pd.DataFrame({
        'date': dates,
        'GPP': gpp,
        'ER': -(0.8 * gpp + 1.0) + rng.normal(0, 0.2, len(dates)),
        'K600': rng.uniform(5, 25, len(dates)),
        'temp_water': temp,
        'light': light,
        'discharge': discharge,
    })


def make_site(site_id='site_a', **kwargs):
    df = make_site_frame(**kwargs)
    units = {col: UNITS[col] for col in df.columns if col in UNITS}
    return SiteTimeSeries(df, site_id=site_id, units=units)


@pytest.fixture
def seasonal_site():
    """Six complete years with a 5 % yearly increase in GPP."""
    return make_site('site_a', n_years=6, trend=0.05, seed=1)


@pytest.fixture
def site_factory():
    return make_site


@pytest.fixture
def frame_factory():
    return make_site_frame


@pytest.fixture
def annual_table():
    """Long annual table for 4 sites and 10 years; site_d declines."""
    rng = np.random.default_rng(42)
    rows = []
    for i, site_id in enumerate(['site_a', 'site_b', 'site_c', 'site_d']):
        slope = -15.0 if site_id == 'site_d' else 20.0
        for j, year in enumerate(range(2005, 2015)):
            rows.append({
                'site_id': site_id,
                'year': year,
                'gpp_total': 800 + 100 * i + slope * j + rng.normal(0, 10),
                'gpp_mean': 2.0 + 0.05 * j + rng.normal(0, 0.02),
                'peak_doy': 190 + rng.normal(0, 5),
            })
    return pd.DataFrame(rows)

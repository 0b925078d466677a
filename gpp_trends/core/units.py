"""
Unit conversions for stream metabolism and driver variables.

Metabolism models report GPP and ER as oxygen fluxes (g O2 m⁻² d⁻¹);
carbon budgets need them in g C m⁻² d⁻¹. Discharge arrives either in cfs
(USGS) or m³ s⁻¹ and light either as shortwave radiation or PAR.
"""

import numpy as np
import pandas as pd
from typing import Callable, Dict, Union

from .data_structures import SiteTimeSeries


# Molar masses (g/mol)
MOLAR_MASS_C = 12.011
MOLAR_MASS_O2 = 31.998

CFS_TO_CMS = 0.0283168
# Shortwave (W m⁻²) to PAR (µmol m⁻² s⁻¹), Britton & Dodd (1976)
SW_TO_PAR = 2.114
SECONDS_PER_DAY = 86400.0

Number = Union[float, np.ndarray, pd.Series]


def o2_to_carbon(
    values: Number,
    photosynthetic_quotient: float = 1.25
) -> Number:
    """
    Convert an oxygen flux to a carbon flux.

    Args:
        values: Flux in g O2 m⁻² d⁻¹
        photosynthetic_quotient: Moles of O2 released per mole of CO2 fixed

    Returns:
        Flux in g C m⁻² d⁻¹
    """
    if photosynthetic_quotient <= 0:
        raise ValueError(
            f"photosynthetic_quotient must be positive, got {photosynthetic_quotient}"
        )
    return values * (MOLAR_MASS_C / MOLAR_MASS_O2) / photosynthetic_quotient


def carbon_to_o2(
    values: Number,
    photosynthetic_quotient: float = 1.25
) -> Number:
    """Inverse of o2_to_carbon."""
    if photosynthetic_quotient <= 0:
        raise ValueError(
            f"photosynthetic_quotient must be positive, got {photosynthetic_quotient}"
        )
    return values * photosynthetic_quotient * (MOLAR_MASS_O2 / MOLAR_MASS_C)


def cfs_to_cms(values: Number) -> Number:
    """Cubic feet per second to cubic meters per second."""
    return values * CFS_TO_CMS


def cms_to_cfs(values: Number) -> Number:
    return values / CFS_TO_CMS


def shortwave_to_par(values: Number) -> Number:
    """Shortwave radiation (W m⁻²) to PAR (µmol m⁻² s⁻¹)."""
    return values * SW_TO_PAR


def par_to_daily_light(values: Number) -> Number:
    """Daily mean PAR (µmol m⁻² s⁻¹) to daily light sum (mol m⁻² d⁻¹)."""
    return values * SECONDS_PER_DAY / 1e6


# name -> (function, source units, target units)
CONVERSIONS: Dict[str, tuple] = {
    'o2_to_carbon': (o2_to_carbon, 'g O2 m⁻² d⁻¹', 'g C m⁻² d⁻¹'),
    'carbon_to_o2': (carbon_to_o2, 'g C m⁻² d⁻¹', 'g O2 m⁻² d⁻¹'),
    'cfs_to_cms': (cfs_to_cms, 'ft³ s⁻¹', 'm³ s⁻¹'),
    'cms_to_cfs': (cms_to_cfs, 'm³ s⁻¹', 'ft³ s⁻¹'),
    'shortwave_to_par': (shortwave_to_par, 'W m⁻²', 'µmol m⁻² s⁻¹'),
    'par_to_daily_light': (par_to_daily_light, 'µmol m⁻² s⁻¹', 'mol m⁻² d⁻¹'),
}


def get_conversion(name: str) -> Callable:
    if name not in CONVERSIONS:
        raise ValueError(
            f"Unknown conversion: {name}. Available: {', '.join(sorted(CONVERSIONS))}"
        )
    return CONVERSIONS[name][0]


def convert_column(
    site: SiteTimeSeries,
    column: str,
    conversion: str,
    target: str = None,
    **kwargs
) -> SiteTimeSeries:
    """
    Add a unit-converted copy of a column to a site, in place.

    Args:
        site: Site to modify
        column: Source column
        conversion: Name of a conversion in CONVERSIONS
        target: Name of the new column (defaults to overwriting `column`)
        **kwargs: Extra arguments for the conversion (e.g. photosynthetic_quotient)

    Returns:
        The same SiteTimeSeries, for chaining
    """
    func = get_conversion(conversion)
    site.check_required_variables([column])

    _, _, target_units = CONVERSIONS[conversion]
    site.set_variable(
        target or column,
        func(site.data[column], **kwargs),
        units=target_units,
        category='converted'
    )
    return site

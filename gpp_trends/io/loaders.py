"""
Readers for precomputed site-level daily metabolism files.

Each site is stored as one CSV file of daily estimates (the file stem is the
site id); a separate metadata table describes the sites.
"""

import pandas as pd
import numpy as np
from typing import Optional, Dict, List, Union
from pathlib import Path
import re
import warnings

from gpp_trends.core.data_structures import SiteTimeSeries


# Column names found in metabolism model outputs mapped to standardized names
COLUMN_MAPPING = {
    "date": "date",
    "solardate": "date",
    "solar_date": "date",
    "datetime": "date",
    "gpp": "GPP",
    "gpp_daily": "GPP",
    "gpp_daily_mean": "GPP",
    "gpp_filled": "GPP",
    "er": "ER",
    "er_daily": "ER",
    "er_daily_mean": "ER",
    "k600": "K600",
    "k600_daily": "K600",
    "k600_daily_mean": "K600",
    "temp_water": "temp_water",
    "temp.water": "temp_water",
    "water_temp": "temp_water",
    "wtr": "temp_water",
    "discharge": "discharge",
    "discharge_daily": "discharge",
    "q": "discharge",
    "light": "light",
    "par": "light",
    "par_surface": "light",
    "light_daily": "light",
    "depth": "depth",
    "depth_daily": "depth",
    "do_obs": "DO_obs",
    "do.obs": "DO_obs",
}

UNITS = {
    "GPP": "g O2 m⁻² d⁻¹",
    "ER": "g O2 m⁻² d⁻¹",
    "K600": "d⁻¹",
    "temp_water": "°C",
    "discharge": "m³ s⁻¹",
    "light": "µmol m⁻² s⁻¹",
    "depth": "m",
    "DO_obs": "mg L⁻¹",
}

METADATA_COLUMN_MAPPING = {
    "site_name": "site_id",
    "sitecode": "site_id",
    "site": "site_id",
    "lat": "latitude",
    "lon": "longitude",
    "long": "longitude",
    "ws_area_km2": "watershed_area",
    "drainage_area": "watershed_area",
}


def _normalize_name(name: str) -> str:
    return re.sub(r"\s+", "_", str(name).strip()).lower()


def standardize_columns(
    df: pd.DataFrame,
    column_map: Optional[Dict[str, str]] = None
) -> pd.DataFrame:
    """
    Rename columns to the standardized names used throughout the package.

    Args:
        df: Raw table
        column_map: Extra or overriding mappings (matched case-insensitively)

    Returns:
        DataFrame with renamed columns; unknown columns are kept as-is
    """
    mapping = dict(COLUMN_MAPPING)
    if column_map:
        mapping.update({_normalize_name(k): v for k, v in column_map.items()})

    renamed = {}
    taken = set()
    for col in df.columns:
        target = mapping.get(_normalize_name(col), str(col).strip())
        # Keep the first column mapped to a given name
        if target in taken:
            continue
        renamed[col] = target
        taken.add(target)

    out = df[list(renamed)].rename(columns=renamed)
    return out


def read_site_csv(
    filepath: Union[str, Path],
    site_id: Optional[str] = None,
    column_map: Optional[Dict[str, str]] = None,
    metadata: Optional[Dict] = None
) -> SiteTimeSeries:
    """
    Read one site's daily metabolism CSV.

    Args:
        filepath: Path to the CSV file
        site_id: Site identifier (defaults to the file stem)
        column_map: Extra column name mappings
        metadata: Site attributes to attach

    Returns:
        SiteTimeSeries with standardized column names and units
    """
    filepath = Path(filepath)
    if not filepath.exists():
        raise FileNotFoundError(f"File not found: {filepath}")

    df = pd.read_csv(filepath, comment='#')
    df = df.loc[:, ~df.columns.astype(str).str.contains('^Unnamed')]
    df = standardize_columns(df, column_map)

    if 'date' not in df.columns:
        raise ValueError(f"No date column found in {filepath.name}")

    df['date'] = pd.to_datetime(df['date'], errors='coerce')
    n_bad = int(df['date'].isna().sum())
    if n_bad:
        warnings.warn(f"{filepath.name}: dropped {n_bad} rows with unparseable dates")
        df = df.dropna(subset=['date'])

    for col in df.columns:
        if col not in ('date', 'site_id'):
            converted = pd.to_numeric(df[col], errors='coerce')
            if converted.notna().any() or df[col].isna().all():
                df[col] = converted

    if 'site_id' in df.columns:
        if site_id is None and df['site_id'].nunique() == 1:
            site_id = str(df['site_id'].iloc[0])
        df = df.drop(columns=['site_id'])

    units = {col: UNITS[col] for col in df.columns if col in UNITS}
    return SiteTimeSeries(
        df,
        site_id=site_id or filepath.stem,
        units=units,
        metadata=metadata
    )


def read_site_metadata(filepath: Union[str, Path]) -> pd.DataFrame:
    """
    Read the site metadata table.

    Args:
        filepath: CSV with one row per site

    Returns:
        DataFrame indexed by 'site_id'
    """
    filepath = Path(filepath)
    if not filepath.exists():
        raise FileNotFoundError(f"File not found: {filepath}")

    df = pd.read_csv(filepath)
    renamed = {}
    for col in df.columns:
        key = _normalize_name(col)
        renamed[col] = METADATA_COLUMN_MAPPING.get(key, key)
    df = df.rename(columns=renamed)

    if 'site_id' not in df.columns:
        raise ValueError(f"No site_id column found in {filepath.name}")

    df['site_id'] = df['site_id'].astype(str)
    if df['site_id'].duplicated().any():
        dupes = df.loc[df['site_id'].duplicated(), 'site_id'].unique().tolist()
        raise ValueError(f"Duplicated site ids in metadata: {dupes}")

    return df.set_index('site_id')


def read_site_directory(
    directory: Union[str, Path],
    pattern: str = '*.csv',
    metadata: Optional[pd.DataFrame] = None,
    column_map: Optional[Dict[str, str]] = None,
    exclude: Optional[List[str]] = None
) -> Dict[str, SiteTimeSeries]:
    """
    Read every site file in a directory.

    Args:
        directory: Directory containing one CSV per site
        pattern: Glob pattern selecting site files
        metadata: Optional metadata table indexed by site_id
        column_map: Extra column name mappings
        exclude: File names to skip (e.g. the metadata file itself)

    Returns:
        Dictionary of site id to SiteTimeSeries, sorted by site id
    """
    directory = Path(directory)
    if not directory.is_dir():
        raise FileNotFoundError(f"Directory not found: {directory}")

    exclude = set(exclude or [])
    sites = {}
    for path in sorted(directory.glob(pattern)):
        if path.name in exclude:
            continue
        site_meta = None
        if metadata is not None and path.stem in metadata.index:
            site_meta = metadata.loc[path.stem].to_dict()
        site = read_site_csv(path, column_map=column_map, metadata=site_meta)
        sites[site.site_id] = site

    if not sites:
        warnings.warn(f"No site files matching '{pattern}' in {directory}")

    return dict(sorted(sites.items()))


def read_annual_drivers(filepath: Union[str, Path]) -> pd.DataFrame:
    """
    Read an external table of annual drivers keyed by site and year.

    Returns:
        DataFrame with 'site_id' and integer 'year' columns
    """
    filepath = Path(filepath)
    if not filepath.exists():
        raise FileNotFoundError(f"File not found: {filepath}")

    df = pd.read_csv(filepath)
    df.columns = [_normalize_name(c) for c in df.columns]
    df = df.rename(columns={k: v for k, v in METADATA_COLUMN_MAPPING.items() if v == 'site_id'})

    missing = [c for c in ('site_id', 'year') if c not in df.columns]
    if missing:
        raise ValueError(f"Missing required columns: {', '.join(missing)}")

    df['site_id'] = df['site_id'].astype(str)
    df['year'] = df['year'].astype(int)
    if df.duplicated(subset=['site_id', 'year']).any():
        raise ValueError("Annual driver table has duplicated site/year rows")
    return df

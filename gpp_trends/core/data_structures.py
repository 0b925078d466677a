"""
Data structures for gpp_trends, including the SiteTimeSeries class.

A SiteTimeSeries holds the daily metabolism record of one river site
together with the units and provenance (observed, filled, converted, ...)
of every column, so that derived tables and figure labels stay consistent.
"""

from typing import Dict, List, Optional, Union, Any
import pandas as pd
import numpy as np
from copy import deepcopy


DATE_COLUMN = 'date'


class SiteTimeSeries:
    """
    Daily time series of a single site with units and metadata tracking.

    Attributes:
        site_id: Site identifier
        data: DataFrame indexed by a sorted, unique daily DatetimeIndex
        units: Dictionary mapping column names to their units
        categories: Dictionary mapping column names to their provenance
        metadata: Site attributes (latitude, longitude, watershed area, ...)
    """

    def __init__(
        self,
        data: Union[pd.DataFrame, Dict, List],
        site_id: str = 'site',
        units: Optional[Dict[str, str]] = None,
        categories: Optional[Dict[str, str]] = None,
        metadata: Optional[Dict[str, Any]] = None
    ):
        """
        Initialize a SiteTimeSeries.

        Args:
            data: Daily records; either indexed by date or with a 'date' column
            site_id: Site identifier
            units: Dictionary of column names to unit strings
            categories: Dictionary of column names to category strings
            metadata: Site attributes
        """
        if isinstance(data, pd.DataFrame):
            df = data.copy()
        else:
            df = pd.DataFrame(data)

        self.site_id = str(site_id)
        self.data = self._prepare_index(df)
        self.units = dict(units or {})
        self.categories = dict(categories or {})
        self.metadata = dict(metadata or {})

        for col in self.data.columns:
            if col not in self.units:
                self.units[col] = "dimensionless"
            if col not in self.categories:
                self.categories[col] = "observed"

    @staticmethod
    def _prepare_index(df: pd.DataFrame) -> pd.DataFrame:
        if DATE_COLUMN in df.columns:
            df[DATE_COLUMN] = pd.to_datetime(df[DATE_COLUMN])
            df = df.set_index(DATE_COLUMN)
        elif not isinstance(df.index, pd.DatetimeIndex):
            if len(df) == 0:
                df.index = pd.DatetimeIndex([])
            else:
                raise ValueError(
                    "Data must have a 'date' column or a DatetimeIndex"
                )

        index = pd.DatetimeIndex(df.index)
        if index.tz is not None:
            index = index.tz_localize(None)
        # Daily resolution; sub-daily timestamps collapse onto their date
        df.index = index.normalize()
        df.index.name = DATE_COLUMN

        if df.index.has_duplicates:
            numeric = df.select_dtypes(include=[np.number, 'bool'])
            other = df.drop(columns=numeric.columns)
            grouped = numeric.groupby(level=0).mean()
            if not other.empty:
                grouped = grouped.join(other.groupby(level=0).first())
            df = grouped[[c for c in df.columns]]

        return df.sort_index()

    def check_required_variables(
        self,
        required: List[str],
        raise_error: bool = True
    ) -> bool:
        """
        Check if required columns exist in the data.

        Args:
            required: List of required column names
            raise_error: If True, raise ValueError if columns are missing

        Returns:
            True if all required columns exist, False otherwise

        Raises:
            ValueError: If raise_error=True and columns are missing
        """
        missing = [col for col in required if col not in self.data.columns]

        if missing:
            msg = f"Site {self.site_id}: missing required columns: {', '.join(missing)}"
            if raise_error:
                raise ValueError(msg)
            return False
        return True

    def has_variable(self, name: str) -> bool:
        return name in self.data.columns and self.data[name].notna().any()

    def get_column_units(self, column: str) -> str:
        """Get units for a specific column."""
        return self.units.get(column, "dimensionless")

    def get_column_category(self, column: str) -> str:
        """Get category for a specific column."""
        return self.categories.get(column, "unknown")

    def set_variable(
        self,
        name: str,
        values: Union[np.ndarray, pd.Series, List, float],
        units: str = "dimensionless",
        category: str = "calculated"
    ) -> None:
        """
        Add or update a variable.

        Args:
            name: Column name
            values: Values to set (aligned on the date index if a Series)
            units: Units for the variable
            category: Provenance of the variable
        """
        self.data[name] = values
        self.units[name] = units
        self.categories[name] = category

    def copy(self) -> 'SiteTimeSeries':
        """Create a deep copy of the SiteTimeSeries."""
        return SiteTimeSeries(
            data=self.data.copy(),
            site_id=self.site_id,
            units=deepcopy(self.units),
            categories=deepcopy(self.categories),
            metadata=deepcopy(self.metadata)
        )

    def with_data(self, data: pd.DataFrame) -> 'SiteTimeSeries':
        """Return a new SiteTimeSeries sharing this one's units and metadata."""
        units = {col: self.units[col] for col in data.columns if col in self.units}
        categories = {col: self.categories[col] for col in data.columns if col in self.categories}
        return SiteTimeSeries(
            data=data,
            site_id=self.site_id,
            units=units,
            categories=categories,
            metadata=deepcopy(self.metadata)
        )

    def subset_period(
        self,
        start: Optional[Union[str, pd.Timestamp]] = None,
        end: Optional[Union[str, pd.Timestamp]] = None
    ) -> 'SiteTimeSeries':
        """
        Restrict the series to an inclusive date range.

        Args:
            start: First date to keep (None for the beginning)
            end: Last date to keep (None for the end)

        Returns:
            New SiteTimeSeries covering the requested period
        """
        return self.with_data(self.data.loc[start:end].copy())

    def subset_columns(self, columns: List[str]) -> 'SiteTimeSeries':
        return self.with_data(self.data[columns].copy())

    def years(self) -> List[int]:
        """Calendar years present in the record."""
        return sorted(self.data.index.year.unique().tolist())

    @property
    def start(self) -> Optional[pd.Timestamp]:
        return self.data.index.min() if len(self.data) else None

    @property
    def end(self) -> Optional[pd.Timestamp]:
        return self.data.index.max() if len(self.data) else None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary format for serialization."""
        df = self.data.reset_index()
        df[DATE_COLUMN] = df[DATE_COLUMN].dt.strftime('%Y-%m-%d')
        return {
            "site_id": self.site_id,
            "data": df.to_dict(orient='list'),
            "units": self.units,
            "categories": self.categories,
            "metadata": self.metadata
        }

    @classmethod
    def from_dict(cls, data_dict: Dict[str, Any]) -> 'SiteTimeSeries':
        """Create SiteTimeSeries from dictionary."""
        return cls(
            data=pd.DataFrame(data_dict["data"]),
            site_id=data_dict.get("site_id", "site"),
            units=data_dict.get("units", {}),
            categories=data_dict.get("categories", {}),
            metadata=data_dict.get("metadata", {})
        )

    def __repr__(self) -> str:
        n_rows, n_cols = self.data.shape
        cols_with_units = [
            f"{col} [{self.units.get(col, '?')}]"
            for col in self.data.columns[:5]
        ]
        if n_cols > 5:
            cols_with_units.append("...")

        period = "empty"
        if n_rows:
            period = f"{self.start:%Y-%m-%d} to {self.end:%Y-%m-%d}"

        return (
            f"SiteTimeSeries '{self.site_id}' with {n_rows} days ({period}):\n"
            f"Columns: {', '.join(cols_with_units)}"
        )

    def __len__(self) -> int:
        return len(self.data)

    def __getitem__(self, key: str) -> pd.Series:
        return self.data[key]

    def __setitem__(self, key: str, value: Any) -> None:
        """Allow direct column setting with default units/category."""
        self.set_variable(key, value)


def combine_sites(
    sites: Union[Dict[str, SiteTimeSeries], List[SiteTimeSeries]],
    columns: Optional[List[str]] = None
) -> pd.DataFrame:
    """
    Stack several sites into one long table.

    Args:
        sites: Sites as a list or a dictionary keyed by site id
        columns: Columns to keep (None keeps all)

    Returns:
        DataFrame with 'site_id' and 'date' columns followed by the data
    """
    if isinstance(sites, dict):
        sites = list(sites.values())

    frames = []
    for site in sites:
        df = site.data if columns is None else site.data.reindex(columns=columns)
        df = df.reset_index()
        df.insert(0, 'site_id', site.site_id)
        frames.append(df)

    if not frames:
        return pd.DataFrame(columns=['site_id', DATE_COLUMN] + (columns or []))
    return pd.concat(frames, ignore_index=True)


def identify_common_columns(
    sites: List[SiteTimeSeries],
    require_all: bool = True
) -> List[str]:
    """
    Identify columns that are common across multiple sites.

    Args:
        sites: List of SiteTimeSeries to compare
        require_all: If True, return only columns present in ALL sites;
                     if False, return columns present in ANY site

    Returns:
        Sorted list of column names
    """
    if not sites:
        return []

    column_sets = [set(site.data.columns) for site in sites]
    if require_all:
        common = set.intersection(*column_sets)
    else:
        common = set.union(*column_sets)
    return sorted(common)

"""
Analysis configuration for gpp_trends.

All thresholds used by the preprocessing, aggregation, trend and model
steps live in a single dataclass so a full run can be reproduced from one
JSON file.
"""

import json
from dataclasses import dataclass, field, asdict, fields
from pathlib import Path
from typing import Dict, List, Tuple, Union, Any


DEFAULT_TREND_VARIABLES = [
    'gpp_total',
    'gpp_mean',
    'gpp_max',
    'peak_doy',
    'q50_doy',
    'season_length',
]

DEFAULT_DRIVER_COLUMNS = [
    'temp_mean',
    'light_mean',
    'discharge_mean',
    'discharge_cv',
    'flashiness',
]


@dataclass
class AnalysisConfig:
    """Container for all tunable analysis settings."""
    # Gap filling and screening
    max_gap_days: int = 3  # Longest run of missing days filled by interpolation
    gpp_lower_limit: float = -0.5  # g O2 m⁻² d⁻¹, days below are flagged
    er_upper_limit: float = 0.5  # g O2 m⁻² d⁻¹, days above are flagged
    k600_er_max_r: float = 0.6  # |r| above this marks a site as equifinal
    photosynthetic_quotient: float = 1.25
    convert_to_carbon: bool = True
    # Aggregation
    min_year_coverage: float = 0.6  # Fraction of valid days for a usable year
    water_year_start_month: int = 1  # 1 = calendar year, 10 = USGS water year
    # Phenology
    phenology_quantiles: Tuple[float, ...] = (0.1, 0.25, 0.5, 0.75, 0.9)
    smoothing_window: int = 7
    # Trends
    min_years: int = 5
    alpha: float = 0.05
    mk_method: str = 'original'
    trend_variables: List[str] = field(default_factory=lambda: list(DEFAULT_TREND_VARIABLES))
    # Mixed models
    model_response: str = 'gpp_total'
    driver_columns: List[str] = field(default_factory=lambda: list(DEFAULT_DRIVER_COLUMNS))
    log_response: bool = True
    # Output
    figure_dpi: int = 300
    figure_formats: List[str] = field(default_factory=lambda: ['png', 'pdf'])
    table_formats: List[str] = field(default_factory=lambda: ['csv'])
    n_jobs: int = 1

    def __post_init__(self):
        self.phenology_quantiles = tuple(float(q) for q in self.phenology_quantiles)

    def validate(self) -> 'AnalysisConfig':
        """
        Check settings for internal consistency.

        Returns:
            The config itself, so calls can be chained

        Raises:
            ValueError: If any setting is out of range
        """
        if self.max_gap_days < 1:
            raise ValueError(f"max_gap_days must be >= 1, got {self.max_gap_days}")
        if not 0 < self.min_year_coverage <= 1:
            raise ValueError(
                f"min_year_coverage must be in (0, 1], got {self.min_year_coverage}"
            )
        if self.min_years < 3:
            raise ValueError(f"min_years must be >= 3, got {self.min_years}")
        quantiles = list(self.phenology_quantiles)
        if not quantiles:
            raise ValueError("phenology_quantiles must not be empty")
        if any(q <= 0 or q >= 1 for q in quantiles):
            raise ValueError(f"phenology_quantiles must lie in (0, 1), got {quantiles}")
        if quantiles != sorted(quantiles) or len(set(quantiles)) != len(quantiles):
            raise ValueError(f"phenology_quantiles must be strictly increasing, got {quantiles}")
        if not 1 <= self.water_year_start_month <= 12:
            raise ValueError(
                f"water_year_start_month must be 1-12, got {self.water_year_start_month}"
            )
        if not 0 < self.alpha < 1:
            raise ValueError(f"alpha must be in (0, 1), got {self.alpha}")
        if self.smoothing_window < 1:
            raise ValueError(f"smoothing_window must be >= 1, got {self.smoothing_window}")
        if self.photosynthetic_quotient <= 0:
            raise ValueError(
                f"photosynthetic_quotient must be positive, got {self.photosynthetic_quotient}"
            )
        return self

    def to_dict(self) -> Dict[str, Any]:
        """Convert to a JSON-serializable dictionary."""
        data = asdict(self)
        data['phenology_quantiles'] = list(self.phenology_quantiles)
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'AnalysisConfig':
        """Create a config from a dictionary, rejecting unknown keys."""
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ValueError(f"Unknown configuration keys: {', '.join(unknown)}")
        return cls(**data).validate()

    def to_json(self, path: Union[str, Path]) -> Path:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, 'w') as f:
            json.dump(self.to_dict(), f, indent=2)
        return path

    @classmethod
    def from_json(cls, path: Union[str, Path]) -> 'AnalysisConfig':
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")
        with open(path, 'r') as f:
            return cls.from_dict(json.load(f))

    @property
    def quantile_labels(self) -> List[str]:
        """Column labels for the phenology quantiles, e.g. 0.25 -> 'q25_doy'."""
        return [quantile_label(q) for q in self.phenology_quantiles]


def quantile_label(q: float) -> str:
    """Format a cumulative fraction as a phenology column name."""
    pct = round(q * 100, 1)
    if float(pct).is_integer():
        return f"q{int(pct)}_doy"
    return f"q{str(pct).replace('.', 'p')}_doy"

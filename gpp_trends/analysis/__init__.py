from .aggregation import (
    add_time_columns,
    annual_summary,
    annual_summaries,
    monthly_summary,
    daily_climatology,
    richards_baker_index,
    site_long_term_means
)
from .phenology import (
    cumulative_quantile_dates,
    peak_timing,
    seasonal_density,
    gaussian_season,
    fit_seasonal_curve,
    phenology_metrics,
    annual_phenology,
    phenology_table,
    period_densities
)
from .trends import (
    TrendResult,
    sens_slope,
    mann_kendall,
    analyze_trend,
    seasonal_kendall,
    site_trends,
    classify_trends
)
from .mixed_models import (
    MixedModelResult,
    standardize_predictors,
    prepare_model_frame,
    fit_mixed_model,
    compare_mixed_models,
    driver_correlations,
    coefficients_table
)
from .batch import (
    BatchResult,
    batch_site_trends,
    process_single_site,
    analyze_slope_variability
)
from .plotting import (
    setup_plot_style,
    plot_site_timeseries,
    plot_annual_trend,
    plot_trend_summary,
    plot_phenology,
    plot_seasonal_density,
    plot_mixed_model_coefficients,
    plot_driver_relationships
)

__all__ = [
    'add_time_columns',
    'annual_summary',
    'annual_summaries',
    'monthly_summary',
    'daily_climatology',
    'richards_baker_index',
    'site_long_term_means',
    'cumulative_quantile_dates',
    'peak_timing',
    'seasonal_density',
    'gaussian_season',
    'fit_seasonal_curve',
    'phenology_metrics',
    'annual_phenology',
    'phenology_table',
    'period_densities',
    'TrendResult',
    'sens_slope',
    'mann_kendall',
    'analyze_trend',
    'seasonal_kendall',
    'site_trends',
    'classify_trends',
    'MixedModelResult',
    'standardize_predictors',
    'prepare_model_frame',
    'fit_mixed_model',
    'compare_mixed_models',
    'driver_correlations',
    'coefficients_table',
    'BatchResult',
    'batch_site_trends',
    'process_single_site',
    'analyze_slope_variability',
    'setup_plot_style',
    'plot_site_timeseries',
    'plot_annual_trend',
    'plot_trend_summary',
    'plot_phenology',
    'plot_seasonal_density',
    'plot_mixed_model_coefficients',
    'plot_driver_relationships'
]

"""
Linear mixed-effects models relating annual GPP to climate and hydrology.

Annual GPP (optionally log-transformed) is modeled as a linear function of
standardized drivers with a random intercept for each site, so that
between-site differences in mean productivity do not masquerade as driver
effects.
"""

import numpy as np
import pandas as pd
from typing import Dict, List, Optional, Tuple
from dataclasses import dataclass, field
import statsmodels.formula.api as smf
from statsmodels.tools.sm_exceptions import ConvergenceWarning
from scipy import stats
import warnings


@dataclass
class MixedModelResult:
    """Container for a fitted random-intercept model."""
    response: str
    predictors: List[str]
    coefficients: pd.DataFrame  # estimate, std_err, z, p_value, ci_lower, ci_upper
    random_intercept_var: float
    residual_var: float
    log_likelihood: float
    aic: float  # From a maximum-likelihood fit
    bic: float
    r2_marginal: float
    r2_conditional: float
    n_obs: int
    n_groups: int
    converged: bool
    reml: bool = True
    random_effects: Dict[str, float] = field(default_factory=dict)
    scaling: Dict[str, Tuple[float, float]] = field(default_factory=dict)
    formula: str = ''
    model: object = None  # Fitted statsmodels results object

    def summary_row(self) -> Dict:
        row = {
            'response': self.response,
            'predictors': ' + '.join(self.predictors) if self.predictors else '1',
            'n_obs': self.n_obs,
            'n_groups': self.n_groups,
            'aic': self.aic,
            'bic': self.bic,
            'log_likelihood': self.log_likelihood,
            'r2_marginal': self.r2_marginal,
            'r2_conditional': self.r2_conditional,
            'converged': self.converged,
        }
        return row


def standardize_predictors(
    df: pd.DataFrame,
    columns: List[str]
) -> Tuple[pd.DataFrame, Dict[str, Tuple[float, float]]]:
    """
    Z-score predictor columns.

    Args:
        df: Table containing the predictors
        columns: Columns to standardize

    Returns:
        Tuple of (copy with standardized columns, {column: (mean, sd)})
    """
    out = df.copy()
    scaling = {}
    for col in columns:
        if col not in out.columns:
            raise ValueError(f"Column '{col}' not found in data")
        mean = out[col].mean()
        sd = out[col].std()
        if not np.isfinite(sd) or sd == 0:
            raise ValueError(f"Predictor '{col}' has no variance")
        out[col] = (out[col] - mean) / sd
        scaling[col] = (float(mean), float(sd))
    return out, scaling


def prepare_model_frame(
    annual: pd.DataFrame,
    response: str,
    predictors: List[str],
    group: str = 'site_id',
    log_response: bool = True,
    standardize: bool = True,
    min_years_per_group: int = 2
) -> Tuple[pd.DataFrame, Dict[str, Tuple[float, float]]]:
    """
    Build the modeling table from annual summaries.

    Rows with missing response or predictors are dropped, as are groups with
    fewer than `min_years_per_group` rows. Non-positive responses are dropped
    before a log transform.

    Returns:
        Tuple of (model frame, predictor scaling)
    """
    required = [group, response] + list(predictors)
    missing = [c for c in required if c not in annual.columns]
    if missing:
        raise ValueError(f"Missing required columns: {', '.join(missing)}")

    df = annual[required + (['year'] if 'year' in annual.columns and 'year' not in required else [])]
    df = df.replace([np.inf, -np.inf], np.nan).dropna(subset=required).copy()

    if log_response:
        n_nonpositive = int((df[response] <= 0).sum())
        if n_nonpositive:
            warnings.warn(f"Dropped {n_nonpositive} rows with non-positive {response} before log transform")
        df = df[df[response] > 0].copy()
        df[response] = np.log(df[response])

    counts = df[group].value_counts()
    keep = counts[counts >= min_years_per_group].index
    df = df[df[group].isin(keep)]

    if df.empty:
        raise ValueError("No complete rows left for modeling")

    scaling = {}
    if standardize and predictors:
        df, scaling = standardize_predictors(df, list(predictors))
    return df.reset_index(drop=True), scaling


def _nakagawa_r2(fit) -> Tuple[float, float]:
    fixed_pred = np.asarray(fit.model.exog) @ np.asarray(fit.fe_params)
    var_f = float(np.var(fixed_pred))
    var_r = float(np.asarray(fit.cov_re)[0, 0]) if np.size(fit.cov_re) else 0.0
    var_e = float(fit.scale)
    total = var_f + var_r + var_e
    if total <= 0:
        return np.nan, np.nan
    return var_f / total, (var_f + var_r) / total


def _information_criteria(ml_fit, n_obs: int) -> Tuple[float, float]:
    # Fixed effects + random intercept variance + residual variance
    k = len(ml_fit.fe_params) + 2
    llf = ml_fit.llf
    return -2 * llf + 2 * k, -2 * llf + k * np.log(n_obs)


def fit_mixed_model(
    df: pd.DataFrame,
    response: str,
    predictors: List[str],
    group: str = 'site_id',
    reml: bool = True,
    alpha: float = 0.05,
    scaling: Optional[Dict[str, Tuple[float, float]]] = None
) -> MixedModelResult:
    """
    Fit a random-intercept linear mixed model with statsmodels.

    Args:
        df: Model frame (see prepare_model_frame)
        response: Response column
        predictors: Fixed-effect predictor columns (may be empty)
        group: Grouping column for the random intercept
        reml: Estimate variance components by REML; AIC/BIC always come
            from an additional ML fit so models with different fixed
            effects can be compared
        alpha: Level for coefficient confidence intervals
        scaling: Predictor scaling to store with the result

    Returns:
        MixedModelResult
    """
    missing = [c for c in [response, group] + list(predictors) if c not in df.columns]
    if missing:
        raise ValueError(f"Missing required columns: {', '.join(missing)}")

    n_groups = df[group].nunique()
    if n_groups < 2:
        raise ValueError(f"Need at least 2 groups for a mixed model, got {n_groups}")
    if len(df) <= len(predictors) + 2:
        raise ValueError("Too few observations for the number of predictors")

    formula = f"{response} ~ " + (' + '.join(predictors) if predictors else '1')

    with warnings.catch_warnings(record=True) as caught:
        warnings.simplefilter('always', ConvergenceWarning)
        model = smf.mixedlm(formula, df, groups=df[group])
        fit = model.fit(reml=reml)
        ml_fit = fit if not reml else model.fit(reml=False)
    convergence_issues = [w for w in caught if issubclass(w.category, ConvergenceWarning)]
    for w in caught:
        if not issubclass(w.category, ConvergenceWarning):
            warnings.warn(w.message, w.category)
    converged = bool(getattr(fit, 'converged', True)) and not convergence_issues
    if not converged:
        warnings.warn(f"Mixed model '{formula}' did not converge cleanly")

    fe_names = list(fit.fe_params.index)
    ci = fit.conf_int(alpha=alpha).loc[fe_names]
    coefficients = pd.DataFrame({
        'estimate': fit.fe_params,
        'std_err': fit.bse_fe,
        'z': fit.tvalues.loc[fe_names],
        'p_value': fit.pvalues.loc[fe_names],
        'ci_lower': ci.iloc[:, 0],
        'ci_upper': ci.iloc[:, 1],
    })
    coefficients.index.name = 'term'

    r2_marginal, r2_conditional = _nakagawa_r2(fit)
    aic, bic = _information_criteria(ml_fit, len(df))

    random_effects = {
        str(k): float(np.asarray(v)[0]) for k, v in fit.random_effects.items()
    }

    return MixedModelResult(
        response=response,
        predictors=list(predictors),
        coefficients=coefficients,
        random_intercept_var=float(np.asarray(fit.cov_re)[0, 0]),
        residual_var=float(fit.scale),
        log_likelihood=float(fit.llf),
        aic=float(aic),
        bic=float(bic),
        r2_marginal=r2_marginal,
        r2_conditional=r2_conditional,
        n_obs=int(len(df)),
        n_groups=int(n_groups),
        converged=converged,
        reml=reml,
        random_effects=random_effects,
        scaling=dict(scaling or {}),
        formula=formula,
        model=fit
    )


def compare_mixed_models(
    annual: pd.DataFrame,
    response: str,
    candidate_sets: Dict[str, List[str]],
    group: str = 'site_id',
    log_response: bool = True
) -> Tuple[pd.DataFrame, Dict[str, MixedModelResult]]:
    """
    Fit several candidate driver sets on the same rows and rank them by AIC.

    All candidates are fitted to the rows complete for the union of their
    predictors so the likelihoods are comparable.

    Args:
        annual: Annual summaries
        response: Response column
        candidate_sets: Model name -> list of predictors
        group: Grouping column
        log_response: Log-transform the response

    Returns:
        Tuple of (ranking table with delta_aic and akaike_weight, results by name)
    """
    if not candidate_sets:
        raise ValueError("No candidate models given")

    all_predictors = sorted({p for preds in candidate_sets.values() for p in preds})
    frame, scaling = prepare_model_frame(annual, response, all_predictors,
                                         group=group, log_response=log_response)

    results = {}
    rows = []
    for name, predictors in candidate_sets.items():
        try:
            result = fit_mixed_model(frame, response, predictors, group=group,
                                     reml=False, scaling={p: scaling[p] for p in predictors})
        except (ValueError, np.linalg.LinAlgError) as e:
            warnings.warn(f"Candidate model '{name}' failed: {e}")
            continue
        results[name] = result
        row = {'model': name}
        row.update(result.summary_row())
        rows.append(row)

    ranking = pd.DataFrame(rows)
    if ranking.empty:
        return ranking, results

    ranking = ranking.sort_values('aic').reset_index(drop=True)
    ranking['delta_aic'] = ranking['aic'] - ranking['aic'].min()
    rel_likelihood = np.exp(-0.5 * ranking['delta_aic'])
    ranking['akaike_weight'] = rel_likelihood / rel_likelihood.sum()
    return ranking, results


def driver_correlations(
    df: pd.DataFrame,
    columns: List[str],
    method: str = 'spearman'
) -> pd.DataFrame:
    """
    Pairwise correlations between drivers (and the response).

    Args:
        df: Table with the columns
        columns: Columns to correlate
        method: 'pearson' or 'spearman'

    Returns:
        Long DataFrame with var1, var2, r, p_value and n for each pair
    """
    if method not in ('pearson', 'spearman'):
        raise ValueError(f"Unknown correlation method: {method}")
    missing = [c for c in columns if c not in df.columns]
    if missing:
        raise ValueError(f"Missing required columns: {', '.join(missing)}")

    func = stats.pearsonr if method == 'pearson' else stats.spearmanr
    rows = []
    for i, a in enumerate(columns):
        for b in columns[i + 1:]:
            paired = df[[a, b]].dropna()
            if len(paired) < 3 or paired[a].nunique() < 2 or paired[b].nunique() < 2:
                r, p = np.nan, np.nan
            else:
                r, p = func(paired[a], paired[b])
            rows.append({'var1': a, 'var2': b, 'r': float(r), 'p_value': float(p),
                         'n': len(paired)})
    return pd.DataFrame(rows)


def coefficients_table(results: Dict[str, MixedModelResult]) -> pd.DataFrame:
    """Stack coefficient tables of several models into one long table."""
    frames = []
    for name, result in results.items():
        coef = result.coefficients.reset_index()
        coef.insert(0, 'model', name)
        frames.append(coef)
    if not frames:
        return pd.DataFrame()
    return pd.concat(frames, ignore_index=True)

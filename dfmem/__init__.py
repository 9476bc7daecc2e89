__version__ = "0.1.0"

from .core import (
    DFMConfig,
    DFMModel,
    SystemMatrices,
    KalmanFilterDFM,
    EMEstimatorDFM,
    kalman_filter,
    kalman_smoother,
    kalman_filter_smoother,
    e_step,
    m_step_dgr,
    m_step_bm,
    run_em,
    select_model,
)
from .dfm import DFM, DFMResult
from .exceptions import DimensionMismatchError, InvalidRestrictionError
from .forecast import forecast_dfm, out_of_sample_rmse
from .utils import impute_missing, standardize, unscale

__all__ = [
    "DFMConfig",
    "DFMModel",
    "SystemMatrices",
    "KalmanFilterDFM",
    "EMEstimatorDFM",
    "kalman_filter",
    "kalman_smoother",
    "kalman_filter_smoother",
    "e_step",
    "m_step_dgr",
    "m_step_bm",
    "run_em",
    "select_model",
    "DFM",
    "DFMResult",
    "DimensionMismatchError",
    "InvalidRestrictionError",
    "forecast_dfm",
    "out_of_sample_rmse",
    "impute_missing",
    "standardize",
    "unscale",
]

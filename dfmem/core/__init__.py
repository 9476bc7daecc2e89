from .model import (
    DFMConfig,
    DFMModel,
    Method,
    Restriction,
    Restrictions,
    SystemMatrices,
)
from .linalg import ainv, apinv, initial_state_covariance
from .kalman import (
    KalmanConfig,
    KalmanFilterDFM,
    KalmanState,
    kalman_filter,
    kalman_filter_smoother,
    kalman_smoother,
)
from .em import (
    EMConfig,
    EMEstimatorDFM,
    EMResult,
    EMState,
    SufficientStats,
    e_step,
    em_converged,
    em_step,
    m_step_bm,
    m_step_dgr,
    run_em,
)
from .selection import (
    InformationCriteria,
    ModelSelectionResult,
    compute_information_criteria,
    count_parameters,
    select_model,
)

__all__ = [
    "DFMConfig",
    "DFMModel",
    "Method",
    "Restriction",
    "Restrictions",
    "SystemMatrices",
    "ainv",
    "apinv",
    "initial_state_covariance",
    "KalmanConfig",
    "KalmanFilterDFM",
    "KalmanState",
    "kalman_filter",
    "kalman_filter_smoother",
    "kalman_smoother",
    "EMConfig",
    "EMEstimatorDFM",
    "EMResult",
    "EMState",
    "SufficientStats",
    "e_step",
    "em_converged",
    "em_step",
    "m_step_bm",
    "m_step_dgr",
    "run_em",
    "InformationCriteria",
    "ModelSelectionResult",
    "compute_information_criteria",
    "count_parameters",
    "select_model",
]

from .forecast import ForecastResult, forecast_dfm, forecast_factors
from .validation import out_of_sample_rmse

__all__ = [
    "ForecastResult",
    "forecast_dfm",
    "forecast_factors",
    "out_of_sample_rmse",
]

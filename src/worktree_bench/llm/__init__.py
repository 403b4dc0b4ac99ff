"""Model credentials and cost estimation."""

from .options import PROVIDER_ENV_KEYS, ModelOptions, build_model_options
from .pricing import estimate_cost

__all__ = [
    "PROVIDER_ENV_KEYS",
    "ModelOptions",
    "build_model_options",
    "estimate_cost",
]

"""Building blocks shared by the models: the mixture value object and
positive parameterizations for fitting.
"""

from .mixture_spec import MixtureSpec
from .parameterization import PositiveParameter, inverse_softplus

__all__ = [
    "MixtureSpec",
    "PositiveParameter",
    "inverse_softplus",
]

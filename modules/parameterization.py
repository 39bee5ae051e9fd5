"""Unconstrained parameterization of positive quantities.

Gradient-based fitting works on a raw, unconstrained tensor; the model
sees ``softplus(raw) + floor`` so μ and φ can never leave the valid domain.
"""

from __future__ import annotations

import torch
import torch.nn as nn
import torch.nn.functional as F
from torch import Tensor


def inverse_softplus(value: Tensor) -> Tensor:
    """Inverse of :func:`torch.nn.functional.softplus` for ``value > 0``."""
    return value + torch.log(-torch.expm1(-value))


class PositiveParameter(nn.Module):
    """Learnable tensor constrained to ``(floor, ∞)``.

    Parameters
    ----------
    init : Tensor
        Initial (positive) value; defines the parameter shape.
    floor : float
        Lower bound, keeps μ/φ strictly away from zero.
    """

    def __init__(self, init: Tensor, floor: float = 1e-6):
        super().__init__()
        init = torch.as_tensor(init, dtype=torch.float64)
        if (init <= floor).any():
            raise ValueError(f"initial values must exceed the floor {floor}")
        self.floor = floor
        self.raw = nn.Parameter(inverse_softplus(init - floor))

    def forward(self) -> Tensor:
        return F.softplus(self.raw) + self.floor

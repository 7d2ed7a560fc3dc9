import torch

import math


NEG_INF = -math.inf


def log_sum(log_probs: torch.Tensor, dim: int | None = None) -> torch.Tensor:
    """
    Calculate log(x1 + x2 + x3 + ...)

    ---

    log(a+b)
        = log( exp(log_a) + exp(log_b) )
        = log( exp(log_a - log_max) + exp(log_b - log_max) ) + log_max

    Shifting by the max keeps exp() away from overflow. When every entry is
    log(0) aka. -inf the result is -inf as well.
    """
    if dim is None:
        log_probs = log_probs.reshape(-1)
        dim = 0
    if log_probs.shape[dim] == 0:
        return torch.full(
            log_probs.sum(dim=dim).shape, -torch.inf, dtype=log_probs.dtype
        )
    log_max = log_probs.max(dim=dim, keepdim=True).values
    # all -inf slices: shift by 0 so that exp() yields 0 instead of nan
    shift = torch.where(torch.isneginf(log_max), torch.zeros_like(log_max), log_max)
    result = torch.exp(log_probs - shift).sum(dim=dim)
    result = torch.log(result) + shift.squeeze(dim)
    return result


def log_indicator(flag: bool) -> float:
    """
    log(1) for True and log(0) for False.
    """
    return 0.0 if flag else NEG_INF


def log_add(log_a: float, log_b: float) -> float:
    """
    Scalar log(a + b).
    """
    if log_a == NEG_INF:
        return log_b
    if log_b == NEG_INF:
        return log_a
    if log_a < log_b:
        log_a, log_b = log_b, log_a
    return log_a + math.log1p(math.exp(log_b - log_a))

import torch
from torchtyping import TensorType as T

from typing import override

from .base import ChartLayerBase
from ..utils import log_sum


class LogSumChartLayer(ChartLayerBase):
    """
    Chart layer for the log-sum-exp semiring.

    Each cell keeps the log of the summed probability of all derivations.
    """

    @override
    def _reduce(self, scores: T["batch", float]) -> torch.Tensor:
        return log_sum(scores)

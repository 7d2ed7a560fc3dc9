import torch
from torchtyping import TensorType as T

from typing import override

from .base import ChartLayerBase


class ViterbiChartLayer(ChartLayerBase):
    """
    Chart layer for the Viterbi (max) semiring.

    Each cell keeps the score of the best derivation only.
    """

    @override
    def _reduce(self, scores: T["batch", float]) -> torch.Tensor:
        return scores.max()

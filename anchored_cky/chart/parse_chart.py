from typing import Callable, Self, Sequence

from .base import ChartLayerBase
from .log_sum import LogSumChartLayer
from .viterbi import ViterbiChartLayer


class ParseChart:
    """
    The dynamic-programming table of one sentence.

    Each span holds two layers of label scores:
    - `bot`: scores before unary rules are applied.
    - `top`: scores after the unary closure of the span.

    Binary rules read their children from `top` and write their parent to `bot`,
    so a unary rule can only be used between two binary rules once.
    """

    def __init__(
        self,
        layer_type: type[ChartLayerBase],
        words: Sequence[object],
        num_labels: int,
    ) -> None:
        self._words = tuple(words)
        self._layer_type = layer_type
        self.bot = layer_type(len(self._words), num_labels)
        self.top = layer_type(len(self._words), num_labels)

    @classmethod
    def viterbi(cls, words: Sequence[object], num_labels: int) -> Self:
        return cls(ViterbiChartLayer, words, num_labels)

    @classmethod
    def log_sum(cls, words: Sequence[object], num_labels: int) -> Self:
        return cls(LogSumChartLayer, words, num_labels)

    @property
    def words(self) -> tuple[object, ...]:
        return self._words

    @property
    def length(self) -> int:
        return len(self._words)

    @property
    def num_labels(self) -> int:
        return self.bot.num_labels

    @property
    def layer_type(self) -> type[ChartLayerBase]:
        return self._layer_type

    @property
    def is_viterbi(self) -> bool:
        return issubclass(self._layer_type, ViterbiChartLayer)


ChartFactory = Callable[[Sequence[object], int], ParseChart]

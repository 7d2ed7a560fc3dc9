import torch
from torchtyping import TensorType as T

import abc
import math
from typing import Iterator, Sequence


class ChartLayerBase(abc.ABC):
    """
    One layer (bot or top) of the parse chart, with features:
    - **Compact storage**: one row per span, (N+1)*N//2 rows, ~50% smaller than N*N.
    - **Dense labels**: each row is a float64 vector over all labels, -inf meaning "not entered".
    - **Abstract accumulation**: subclasses only need to implement the semiring
        reduction used when several scores are entered into the same cell.

    Structure (spans are half-open, `end` is exclusive):
    ```
    idx | 1 2 3 ... N   end (column index)
    ---------------------
    0   | D D D ... D
    1   |   D D ... D
    2   |     D ... D
    ... |
    N-1 |           D
    begin (row index)

    D is a vector that map label => score (so this is a 3D chart in actual)
    ```
    Accessing a cell with `begin >= end` raises IndexError.
    """

    def __init__(self, length: int, num_labels: int) -> None:
        """
        :param length: number of words in the sentence.
        :param num_labels: size of the label index of the grammar.
        """
        assert length > 0 and num_labels >= 0
        self._length = length
        self._num_labels = num_labels
        self._scores: T["span", "label", float] = torch.full(
            ((length + 1) * length // 2, num_labels), -torch.inf, dtype=torch.float64
        )

    @property
    def length(self) -> int:
        return self._length

    @property
    def num_labels(self) -> int:
        return self._num_labels

    def _calc_offset(self, begin: int, end: int) -> int:
        """
        Calculate the real offset in the storage given the span [`begin`, `end`)

        With `right = end - 1` the cells are laid out row by row:
        ```
        0,1,2,3,...,N-1
          1,2,3,...,N-1
            2,3,...,N-1
                    ...
                    N-1
        ```

        When point to `begin` row `right` column, the offset is:
        - Sum up the number of elements in rows before `begin`. It's a trapezoid, with:
            - base-length `N`
            - top-length `N-(begin-1)`
            - number of rows `begin`
            - The formula is `(N + N-(begin-1)) * begin // 2`
        - Plus the offset in current row, `right - begin`
        """
        if not 0 <= begin < end <= self._length:
            raise IndexError(f"span [{begin}, {end}) outside sentence of length {self._length}")
        right = end - 1
        return begin * (self._length * 2 - (begin - 1)) // 2 + right - begin

    def label_score(self, begin: int, end: int, label: int) -> float:
        return float(self._scores[self._calc_offset(begin, end), label])

    def label_scores(self, begin: int, end: int) -> T["label", float]:
        """
        Scores of all labels over [`begin`, `end`), as a copy detached from the chart.
        """
        return self._scores[self._calc_offset(begin, end)].clone()

    def entered_label_indexes(self, begin: int, end: int) -> list[int]:
        """
        Labels with a score other than -inf over [`begin`, `end`), in index order.
        """
        row = self._scores[self._calc_offset(begin, end)]
        return torch.nonzero(row > -torch.inf).flatten().tolist()

    def is_entered(self, begin: int, end: int, label: int) -> bool:
        return self.label_score(begin, end, label) > -math.inf

    def feasible_span(
        self, begin: int, end: int, left_label: int, right_label: int
    ) -> Iterator[int]:
        """
        Split points `split` of [`begin`, `end`) such that `left_label` is entered
        over [`begin`, `split`) and `right_label` over [`split`, `end`).
        """
        self._calc_offset(begin, end)
        if end - begin < 2:
            return
        # [begin, split) are adjacent rows of the `begin` block
        left_offsets = self._calc_offset(begin, begin + 1) + torch.arange(end - begin - 1)
        splits = torch.arange(begin + 1, end)
        # [split, end): row `split`, column `end - 1`
        right_offsets = splits * (self._length * 2 - (splits - 1)) // 2 + (end - 1) - splits
        feasible = (self._scores[left_offsets, left_label] > -torch.inf) & (
            self._scores[right_offsets, right_label] > -torch.inf
        )
        for idx in torch.nonzero(feasible).flatten().tolist():
            yield begin + 1 + idx

    def enter(self, begin: int, end: int, label: int, score: float) -> None:
        """
        Accumulate `score` into the cell of `label` over [`begin`, `end`).
        """
        self.enter_many(begin, end, label, (score,))

    def enter_many(
        self, begin: int, end: int, label: int, scores: Sequence[float]
    ) -> None:
        """
        Accumulate all of `scores` into one cell with a single reduction.
        """
        if len(scores) == 0:
            return
        offset = self._calc_offset(begin, end)
        current = self._scores[offset, label]
        batch = torch.tensor(scores, dtype=torch.float64)
        assert not torch.isnan(batch).any(), scores
        self._scores[offset, label] = self._reduce(torch.cat((current.reshape(1), batch)))

    @abc.abstractmethod
    def _reduce(self, scores: T["batch", float]) -> torch.Tensor:
        """
        Semiring addition of all `scores` into one scalar tensor.
        """

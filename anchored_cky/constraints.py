import torch
from torchtyping import TensorType as T

from dataclasses import dataclass
from typing import Iterable, Self


class LabeledSpanConstraints:
    """
    Admissibility mask over (begin, end, label) triples of one sentence.

    The mask is a bool tensor indexed `[begin, end, label]` with spans half-open,
    so only entries with `begin < end` are meaningful. `None` stands for "no
    sparsity" and admits everything, whatever the sentence length.

    Intersection (`&`) is associative and commutative, and never re-admits a
    triple excluded by either side.
    """

    def __init__(self, mask: T["begin", "end", "label", bool] | None = None) -> None:
        if mask is not None:
            assert mask.dtype == torch.bool and mask.dim() == 3
            assert mask.shape[0] == mask.shape[1]
        self._mask = mask

    @classmethod
    def no_sparsity(cls) -> Self:
        return cls(None)

    @classmethod
    def from_allowed(
        cls, length: int, num_labels: int, allowed: Iterable[tuple[int, int, int]]
    ) -> Self:
        """
        Admit exactly the given (begin, end, label) triples.
        """
        mask = torch.zeros(length + 1, length + 1, num_labels, dtype=torch.bool)
        for begin, end, label in allowed:
            assert 0 <= begin < end <= length
            mask[begin, end, label] = True
        return cls(mask)

    @classmethod
    def from_forbidden(
        cls, length: int, num_labels: int, forbidden: Iterable[tuple[int, int, int]]
    ) -> Self:
        """
        Admit everything except the given (begin, end, label) triples.
        """
        mask = torch.ones(length + 1, length + 1, num_labels, dtype=torch.bool)
        for begin, end, label in forbidden:
            assert 0 <= begin < end <= length
            mask[begin, end, label] = False
        return cls(mask)

    @property
    def mask(self) -> T["begin", "end", "label", bool] | None:
        return self._mask

    @property
    def is_unconstrained(self) -> bool:
        return self._mask is None

    def is_allowed_labeled_span(self, begin: int, end: int, label: int) -> bool:
        if self._mask is None:
            return True
        return bool(self._mask[begin, end, label])

    def __and__(self, other: "LabeledSpanConstraints") -> "LabeledSpanConstraints":
        if not isinstance(other, LabeledSpanConstraints):
            return NotImplemented
        if other._mask is None:
            return self
        if self._mask is None:
            return other
        if self._mask.shape != other._mask.shape:
            raise ValueError(
                f"constraints of shape {tuple(self._mask.shape)} and "
                f"{tuple(other._mask.shape)} cover different sentences or labels"
            )
        return LabeledSpanConstraints(self._mask & other._mask)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, LabeledSpanConstraints):
            return NotImplemented
        if self._mask is None or other._mask is None:
            return self._mask is None and other._mask is None
        return self._mask.shape == other._mask.shape and bool(
            torch.equal(self._mask, other._mask)
        )

    __hash__ = None


@dataclass(frozen=True, eq=True)
class ChartConstraints:
    """
    Sparsity pattern of a chart: one mask for top cells, one for bot cells.
    """

    top: LabeledSpanConstraints
    bot: LabeledSpanConstraints

    @classmethod
    def no_sparsity(cls) -> Self:
        return cls(
            top=LabeledSpanConstraints.no_sparsity(),
            bot=LabeledSpanConstraints.no_sparsity(),
        )

    @property
    def is_unconstrained(self) -> bool:
        return self.top.is_unconstrained and self.bot.is_unconstrained

    def __and__(self, other: "ChartConstraints") -> "ChartConstraints":
        if not isinstance(other, ChartConstraints):
            return NotImplemented
        return ChartConstraints(top=self.top & other.top, bot=self.bot & other.bot)

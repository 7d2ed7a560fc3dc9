from typing import Mapping, Sequence


class GrammarConfigurationError(ValueError):
    """
    The grammar, lexicon or projection handed to the parser is malformed.

    Raised while objects are constructed. A lexicon whose `labels` is None can't
    be checked up front; its unknown labels are reported when a word is looked up.
    """


class ChartParserError(RuntimeError):
    """
    Base class of fatal errors raised while building a chart.
    """


class CoverageError(ChartParserError):
    """
    A token has no label with a finite lexical score, so no chart can cover it.
    """

    def __init__(
        self, word: object, position: int, tag_scores: Mapping[str, float]
    ) -> None:
        self.word = word
        self.position = position
        self.tag_scores = dict(tag_scores)
        super().__init__(
            f"couldn't score {word!r} at position {position}: "
            f"lexical scores {self.tag_scores}"
        )


class CoarseParseFailure(ChartParserError):
    """
    The coarse grammar assigns the sentence log probability -inf.

    The sentence has no derivation at all under the coarse grammar, which is a
    different situation from the fine grammar failing after pruning.
    """

    def __init__(self, words: Sequence[object]) -> None:
        self.words = tuple(words)
        super().__init__(f"no coarse derivation for sentence {list(self.words)}")

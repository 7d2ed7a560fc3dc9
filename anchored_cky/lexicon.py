import nltk

import abc
import math
from types import MappingProxyType
from typing import Mapping, Sequence, Self, override


class LexiconAnchor:
    """
    A lexicon applied to one sentence.

    The per-position label => score tables are computed once, when the anchor
    is created, and are read-only afterwards, so one anchor may be shared by
    every anchoring built for the sentence.
    """

    def __init__(self, words: Sequence[object], tag_scores: Sequence[Mapping[str, float]]) -> None:
        assert len(words) == len(tag_scores)
        self._words = tuple(words)
        self._tag_scores = tuple(MappingProxyType(dict(x)) for x in tag_scores)
        self._allowed = tuple(
            frozenset(tag for tag, score in x.items() if score > -math.inf)
            for x in self._tag_scores
        )

    @property
    def words(self) -> tuple[object, ...]:
        return self._words

    @property
    def length(self) -> int:
        return len(self._words)

    def tag_scores(self, position: int) -> Mapping[str, float]:
        """
        All lexical scores of the token at `position`, -inf entries included.
        """
        return self._tag_scores[position]

    def allowed_tags(self, position: int) -> frozenset[str]:
        """
        Tag constraints: labels with a finite score at `position`.
        """
        return self._allowed[position]


class Lexicon(abc.ABC):
    """
    Maps a token, in the context of its sentence, to candidate labels with log scores.
    """

    @abc.abstractmethod
    def score_tags(self, words: Sequence[object], position: int) -> Mapping[str, float]:
        """
        Lexical log scores of `words[position]`.
        - Return: dict that map label => log score, -inf meaning disallowed.
        """

    @property
    def labels(self) -> frozenset[str] | None:
        """
        Every label `score_tags` may return, or None when it isn't known up front.
        Parsers check known labels against their topology when constructed.
        """
        return None

    def anchor(self, words: Sequence[object]) -> LexiconAnchor:
        words = tuple(words)
        scores = [self.score_tags(words, idx) for idx in range(len(words))]
        return LexiconAnchor(words, scores)


class SimpleLexicon(Lexicon):
    """
    Context free lexicon looking words up in a table.

    Words missing from the table get `unknown_word_scores`, or no label at all
    when it is None.
    """

    def __init__(
        self,
        tag_scores: Mapping[object, Mapping[str, float]],
        unknown_word_scores: Mapping[str, float] | None = None,
    ) -> None:
        """
        :param tag_scores: dict that map word => {label => log score}
        :param unknown_word_scores: dict that map label => log score, for unseen words
        """
        self._tag_scores = {w: dict(x) for w, x in tag_scores.items()}
        self._unknown = dict(unknown_word_scores or {})

    @classmethod
    def from_nltk(cls, grammar: nltk.CFG) -> Self:
        """
        Collect the lexical productions `A -> word` of an `nltk.CFG` or `nltk.PCFG`.
        """
        tag_scores = dict[str, dict[str, float]]()
        for prod in grammar.productions():
            rhs = prod.rhs()
            if len(rhs) != 1 or not isinstance(rhs[0], str):
                continue
            score = math.log(prod.prob()) if hasattr(prod, "prob") else 0.0
            tag_scores.setdefault(rhs[0], dict())[prod.lhs().symbol()] = score
        return cls(tag_scores)

    @property
    @override
    def labels(self) -> frozenset[str]:
        result = set(self._unknown)
        for scores in self._tag_scores.values():
            result.update(scores)
        return frozenset(result)

    @override
    def score_tags(self, words: Sequence[object], position: int) -> Mapping[str, float]:
        return self._tag_scores.get(words[position], self._unknown)

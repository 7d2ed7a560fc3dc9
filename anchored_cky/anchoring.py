import abc
import math
from typing import Sequence, override

from .constraints import ChartConstraints
from .lexicon import Lexicon, LexiconAnchor
from .topology import Topology
from .utils import NEG_INF, log_indicator


class CoreAnchoring(abc.ABC):
    """
    Scores rules and labels of one sentence, without refined categories.

    All scores are log potentials; -inf forbids the corresponding derivation step.
    Anchorings are persistent values: nothing mutates them after construction,
    so they can be shared across threads parsing different sentences.

    The algebra is closed over four variants:
    - `IdentityAnchoring`: 0 wherever its sparsity pattern admits, -inf elsewhere.
    - `ProductAnchoring`: point-wise sum of two anchorings (`a * b`).
    - `QuotientAnchoring`: point-wise difference of two anchorings (`a / b`).
    - any other subclass, which scores sites itself.

    `None` is not an operand: `a * None` raises TypeError. Pass
    `CoreAnchoring.identity(...)` where no scorer is wanted.

    Children classes must call super().__init__() and implement the following methods:
    - `score_binary_rule(self, begin: int, split: int, end: int, rule: int) -> float`
    - `score_unary_rule(self, begin: int, end: int, rule: int) -> float`
    - `score_span(self, begin: int, end: int, label: int) -> float`
    """

    def __init__(
        self,
        topology: Topology,
        lexicon: Lexicon,
        words: Sequence[object],
        lexicon_anchor: LexiconAnchor | None = None,
    ) -> None:
        """
        :param lexicon_anchor: anchor of `lexicon` on `words` to share, computed here if None.
        """
        self._topology = topology
        self._lexicon = lexicon
        self._words = tuple(words)
        if lexicon_anchor is None:
            lexicon_anchor = lexicon.anchor(self._words)
        assert lexicon_anchor.length == len(self._words)
        self._lexicon_anchor = lexicon_anchor

    @staticmethod
    def identity(
        topology: Topology,
        lexicon: Lexicon,
        words: Sequence[object],
        constraints: ChartConstraints | None = None,
        lexicon_anchor: LexiconAnchor | None = None,
    ) -> "IdentityAnchoring":
        return IdentityAnchoring(
            topology,
            lexicon,
            words,
            constraints or ChartConstraints.no_sparsity(),
            lexicon_anchor=lexicon_anchor,
        )

    @property
    def topology(self) -> Topology:
        return self._topology

    @property
    def lexicon(self) -> Lexicon:
        return self._lexicon

    @property
    def words(self) -> tuple[object, ...]:
        return self._words

    @property
    def tag_constraints(self) -> LexiconAnchor:
        return self._lexicon_anchor

    @property
    def sparsity_pattern(self) -> ChartConstraints:
        return ChartConstraints.no_sparsity()

    def add_constraints(self, constraints: ChartConstraints) -> "CoreAnchoring":
        """
        Return an anchoring that also forbids what `constraints` excludes.
        """
        if constraints.is_unconstrained:
            return self
        return ProductAnchoring(self, self._identity_with(constraints))

    @abc.abstractmethod
    def score_binary_rule(self, begin: int, split: int, end: int, rule: int) -> float:
        """
        Score the indexed binary rule when it occurs at (begin, split, end).
        """

    @abc.abstractmethod
    def score_unary_rule(self, begin: int, end: int, rule: int) -> float:
        """
        Score the indexed unary rule when it occurs at (begin, end).
        """

    @abc.abstractmethod
    def score_span(self, begin: int, end: int, label: int) -> float:
        """
        Score the indexed label as a bot label over (begin, end).
        Typically used to filter out impossible labels with -inf.
        """

    def __mul__(self, other: "CoreAnchoring") -> "CoreAnchoring":
        if not isinstance(other, CoreAnchoring):
            return NotImplemented
        self._check_compatible(other)
        match self, other:
            case IdentityAnchoring(), IdentityAnchoring():
                return self._identity_with(
                    self.sparsity_pattern & other.sparsity_pattern
                )
            case _, IdentityAnchoring():
                return self.add_constraints(other.sparsity_pattern)
            case IdentityAnchoring(), _:
                return other.add_constraints(self.sparsity_pattern)
            case _:
                return ProductAnchoring(self, other)

    def __truediv__(self, other: "CoreAnchoring") -> "CoreAnchoring":
        if not isinstance(other, CoreAnchoring):
            return NotImplemented
        self._check_compatible(other)
        if self is other:
            return self._identity_with(self.sparsity_pattern)
        match other:
            case IdentityAnchoring():
                return self.add_constraints(other.sparsity_pattern)
            case _:
                return QuotientAnchoring(self, other)

    def lift(self) -> "LiftedCoreAnchoring":
        """
        View this anchoring as a refined anchoring with a single refinement everywhere.
        """
        from .refined import LiftedCoreAnchoring

        return LiftedCoreAnchoring(self)

    def _identity_with(self, constraints: ChartConstraints) -> "IdentityAnchoring":
        return IdentityAnchoring(
            self._topology,
            self._lexicon,
            self._words,
            constraints,
            lexicon_anchor=self._lexicon_anchor,
        )

    def _check_compatible(self, other: "CoreAnchoring") -> None:
        if other._topology is not self._topology:
            raise ValueError("anchorings over different topologies can't be combined")
        if len(other._words) != len(self._words):
            raise ValueError(
                f"anchorings over sentences of length {len(self._words)} "
                f"and {len(other._words)} can't be combined"
            )


class IdentityAnchoring(CoreAnchoring):
    """
    Assign 0 to everything allowed by the sparsity pattern.
    """

    __match_args__ = ("sparsity_pattern",)

    def __init__(
        self,
        topology: Topology,
        lexicon: Lexicon,
        words: Sequence[object],
        constraints: ChartConstraints,
        lexicon_anchor: LexiconAnchor | None = None,
    ) -> None:
        super().__init__(topology, lexicon, words, lexicon_anchor=lexicon_anchor)
        self._constraints = constraints

    @property
    @override
    def sparsity_pattern(self) -> ChartConstraints:
        return self._constraints

    @override
    def add_constraints(self, constraints: ChartConstraints) -> CoreAnchoring:
        if constraints.is_unconstrained:
            return self
        return self._identity_with(self._constraints & constraints)

    @override
    def score_binary_rule(self, begin: int, split: int, end: int, rule: int) -> float:
        return 0.0

    @override
    def score_unary_rule(self, begin: int, end: int, rule: int) -> float:
        parent = self._topology.parent(rule)
        return log_indicator(
            self._constraints.top.is_allowed_labeled_span(begin, end, parent)
        )

    @override
    def score_span(self, begin: int, end: int, label: int) -> float:
        return log_indicator(
            self._constraints.bot.is_allowed_labeled_span(begin, end, label)
        )


class ProductAnchoring(CoreAnchoring):
    """
    Point-wise product of two anchorings; in log space the scores are summed.
    """

    __match_args__ = ("left", "right")

    def __init__(self, left: CoreAnchoring, right: CoreAnchoring) -> None:
        super().__init__(
            left.topology, left.lexicon, left.words, lexicon_anchor=left.tag_constraints
        )
        self.left = left
        self.right = right
        self._constraints = left.sparsity_pattern & right.sparsity_pattern

    @property
    @override
    def sparsity_pattern(self) -> ChartConstraints:
        return self._constraints

    @override
    def score_binary_rule(self, begin: int, split: int, end: int, rule: int) -> float:
        score = self.left.score_binary_rule(begin, split, end, rule)
        if score == NEG_INF:
            return score
        return score + self.right.score_binary_rule(begin, split, end, rule)

    @override
    def score_unary_rule(self, begin: int, end: int, rule: int) -> float:
        score = self.left.score_unary_rule(begin, end, rule)
        if score == NEG_INF:
            return score
        return score + self.right.score_unary_rule(begin, end, rule)

    @override
    def score_span(self, begin: int, end: int, label: int) -> float:
        score = self.left.score_span(begin, end, label)
        if score == NEG_INF:
            return score
        return score + self.right.score_span(begin, end, label)


class QuotientAnchoring(CoreAnchoring):
    """
    Point-wise quotient of two anchorings; in log space the scores are subtracted.

    A site forbidden by either side stays forbidden (-inf), it never turns into
    +inf or nan.
    """

    __match_args__ = ("numerator", "denominator")

    def __init__(self, numerator: CoreAnchoring, denominator: CoreAnchoring) -> None:
        super().__init__(
            numerator.topology,
            numerator.lexicon,
            numerator.words,
            lexicon_anchor=numerator.tag_constraints,
        )
        self.numerator = numerator
        self.denominator = denominator
        self._constraints = numerator.sparsity_pattern & denominator.sparsity_pattern

    @property
    @override
    def sparsity_pattern(self) -> ChartConstraints:
        return self._constraints

    @staticmethod
    def _divide(score: float, divisor: float) -> float:
        if score == NEG_INF or divisor == NEG_INF:
            return NEG_INF
        result = score - divisor
        return NEG_INF if math.isnan(result) else result

    @override
    def score_binary_rule(self, begin: int, split: int, end: int, rule: int) -> float:
        return self._divide(
            self.numerator.score_binary_rule(begin, split, end, rule),
            self.denominator.score_binary_rule(begin, split, end, rule),
        )

    @override
    def score_unary_rule(self, begin: int, end: int, rule: int) -> float:
        return self._divide(
            self.numerator.score_unary_rule(begin, end, rule),
            self.denominator.score_unary_rule(begin, end, rule),
        )

    @override
    def score_span(self, begin: int, end: int, label: int) -> float:
        return self._divide(
            self.numerator.score_span(begin, end, label),
            self.denominator.score_span(begin, end, label),
        )

import abc
from typing import Sequence, override

from .anchoring import CoreAnchoring
from .topology import Topology


class RefinedAnchoring(abc.ABC):
    """
    Scores rules and labels of one sentence together with an integer refinement.

    Refinements distinguish latent sub-categories of a label (or rule) beyond the
    base grammar. Every score takes the refinement index as its last argument,
    and the enumeration methods report which refinements are valid in a context,
    so that a chart builder only visits refinements that can score.
    """

    @property
    @abc.abstractmethod
    def topology(self) -> Topology:
        pass

    @property
    @abc.abstractmethod
    def words(self) -> tuple[object, ...]:
        pass

    @abc.abstractmethod
    def score_binary_rule(
        self, begin: int, split: int, end: int, rule: int, ref: int
    ) -> float:
        pass

    @abc.abstractmethod
    def score_unary_rule(self, begin: int, end: int, rule: int, ref: int) -> float:
        pass

    @abc.abstractmethod
    def score_span(self, begin: int, end: int, label: int, ref: int) -> float:
        pass

    @abc.abstractmethod
    def valid_label_refinements(self, begin: int, end: int, label: int) -> Sequence[int]:
        pass

    @abc.abstractmethod
    def num_valid_refinements(self, label: int) -> int:
        pass

    @abc.abstractmethod
    def num_valid_rule_refinements(self, rule: int) -> int:
        pass

    @abc.abstractmethod
    def valid_rule_refinements_given_parent(
        self, begin: int, end: int, rule: int, parent_ref: int
    ) -> Sequence[int]:
        pass

    @abc.abstractmethod
    def valid_unary_rule_refinements_given_child(
        self, begin: int, end: int, rule: int, child_ref: int
    ) -> Sequence[int]:
        pass

    @abc.abstractmethod
    def valid_rule_refinements_given_left_child(
        self,
        begin: int,
        split: int,
        completion_begin: int,
        completion_end: int,
        rule: int,
        child_ref: int,
    ) -> Sequence[int]:
        pass

    @abc.abstractmethod
    def valid_rule_refinements_given_right_child(
        self,
        completion_begin: int,
        completion_end: int,
        split: int,
        end: int,
        rule: int,
        child_ref: int,
    ) -> Sequence[int]:
        pass

    @abc.abstractmethod
    def valid_left_child_refinements_given_rule(
        self, begin: int, end: int, completion_begin: int, completion_end: int, rule: int
    ) -> Sequence[int]:
        pass

    @abc.abstractmethod
    def valid_right_child_refinements_given_rule(
        self, completion_begin: int, completion_end: int, begin: int, end: int, rule: int
    ) -> Sequence[int]:
        pass

    @abc.abstractmethod
    def valid_parent_refinements_given_rule(
        self, begin: int, split_begin: int, split_end: int, end: int, rule: int
    ) -> Sequence[int]:
        pass

    @abc.abstractmethod
    def valid_coarse_rules_given_parent_refinement(
        self, label: int, parent_ref: int
    ) -> Sequence[int]:
        pass

    @abc.abstractmethod
    def left_child_refinement(self, rule: int, rule_ref: int) -> int:
        pass

    @abc.abstractmethod
    def right_child_refinement(self, rule: int, rule_ref: int) -> int:
        pass

    @abc.abstractmethod
    def parent_refinement(self, rule: int, rule_ref: int) -> int:
        pass

    @abc.abstractmethod
    def child_refinement(self, rule: int, rule_ref: int) -> int:
        pass

    @abc.abstractmethod
    def rule_refinement_from_refinements(
        self, rule: int, ref_a: int, ref_b: int, ref_c: int | None = None
    ) -> int:
        """
        Joint rule refinement of parent `ref_a` and child(ren) `ref_b` (, `ref_c`).
        """


# shared by every lifted anchoring, never mutated
_ZERO_REFINEMENTS: tuple[int, ...] = (0,)


class LiftedCoreAnchoring(RefinedAnchoring):
    """
    A `CoreAnchoring` seen as a `RefinedAnchoring` with exactly one refinement,
    numbered 0, for every label and rule.
    """

    def __init__(self, core: CoreAnchoring) -> None:
        self._core = core

    @property
    def core(self) -> CoreAnchoring:
        return self._core

    @property
    @override
    def topology(self) -> Topology:
        return self._core.topology

    @property
    @override
    def words(self) -> tuple[object, ...]:
        return self._core.words

    @override
    def score_binary_rule(
        self, begin: int, split: int, end: int, rule: int, ref: int
    ) -> float:
        return self._core.score_binary_rule(begin, split, end, rule)

    @override
    def score_unary_rule(self, begin: int, end: int, rule: int, ref: int) -> float:
        return self._core.score_unary_rule(begin, end, rule)

    @override
    def score_span(self, begin: int, end: int, label: int, ref: int) -> float:
        return self._core.score_span(begin, end, label)

    @override
    def valid_label_refinements(self, begin: int, end: int, label: int) -> Sequence[int]:
        return _ZERO_REFINEMENTS

    @override
    def num_valid_refinements(self, label: int) -> int:
        return 1

    @override
    def num_valid_rule_refinements(self, rule: int) -> int:
        return 1

    @override
    def valid_rule_refinements_given_parent(
        self, begin: int, end: int, rule: int, parent_ref: int
    ) -> Sequence[int]:
        return _ZERO_REFINEMENTS

    @override
    def valid_unary_rule_refinements_given_child(
        self, begin: int, end: int, rule: int, child_ref: int
    ) -> Sequence[int]:
        return _ZERO_REFINEMENTS

    @override
    def valid_rule_refinements_given_left_child(
        self,
        begin: int,
        split: int,
        completion_begin: int,
        completion_end: int,
        rule: int,
        child_ref: int,
    ) -> Sequence[int]:
        return _ZERO_REFINEMENTS

    @override
    def valid_rule_refinements_given_right_child(
        self,
        completion_begin: int,
        completion_end: int,
        split: int,
        end: int,
        rule: int,
        child_ref: int,
    ) -> Sequence[int]:
        return _ZERO_REFINEMENTS

    @override
    def valid_left_child_refinements_given_rule(
        self, begin: int, end: int, completion_begin: int, completion_end: int, rule: int
    ) -> Sequence[int]:
        return _ZERO_REFINEMENTS

    @override
    def valid_right_child_refinements_given_rule(
        self, completion_begin: int, completion_end: int, begin: int, end: int, rule: int
    ) -> Sequence[int]:
        return _ZERO_REFINEMENTS

    @override
    def valid_parent_refinements_given_rule(
        self, begin: int, split_begin: int, split_end: int, end: int, rule: int
    ) -> Sequence[int]:
        return self.valid_label_refinements(begin, end, self.topology.parent(rule))

    @override
    def valid_coarse_rules_given_parent_refinement(
        self, label: int, parent_ref: int
    ) -> Sequence[int]:
        return self.topology.indexed_binary_rules_with_parent(label)

    @override
    def left_child_refinement(self, rule: int, rule_ref: int) -> int:
        return 0

    @override
    def right_child_refinement(self, rule: int, rule_ref: int) -> int:
        return 0

    @override
    def parent_refinement(self, rule: int, rule_ref: int) -> int:
        return 0

    @override
    def child_refinement(self, rule: int, rule_ref: int) -> int:
        return 0

    @override
    def rule_refinement_from_refinements(
        self, rule: int, ref_a: int, ref_b: int, ref_c: int | None = None
    ) -> int:
        return 0

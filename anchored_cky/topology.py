import nltk

from dataclasses import dataclass
from typing import Iterable, Mapping, Self
import math

from .errors import GrammarConfigurationError


@dataclass(frozen=True)
class BinaryRule:
    parent: str
    left: str
    right: str


@dataclass(frozen=True)
class UnaryRule:
    parent: str
    child: str


class Topology:
    """
    Immutable index over the labels and rules of a grammar.

    Labels and rules are mapped to dense integers once, at construction. All
    lookups used in the inner loops of the chart builder are tuples indexed by
    those integers:

    ```
    rule index | 0 1 ... B-1 | B B+1 ... B+U-1
    -----------------------------------------
    kind       | binary      | unary
    ```

    - `indexed_binary_rules_with_parent[A]` => rules `A -> B C`
    - `indexed_binary_rules_with_left_child[B]` => rules `A -> B C`
    - `indexed_binary_rules_with_right_child[C]` => rules `A -> B C`
    - `indexed_unary_rules_with_parent[A]` => rules `A -> B`
    - `indexed_unary_rules_with_child[B]` => rules `A -> B`

    Unary rules are applied at most once per span, so a cycle of unary rules
    (including `A -> A`) is rejected here rather than at parse time.
    """

    def __init__(
        self,
        binary_rules: Mapping[tuple[str, str, str], float],
        unary_rules: Mapping[tuple[str, str], float] | None = None,
        labels: Iterable[str] = (),
    ) -> None:
        """
        :param binary_rules: dict that map (parent, left, right) => log score
        :param unary_rules: dict that map (parent, child) => log score
        :param labels: labels to be indexed first, e.g. preterminals without rules
        """
        unary_rules = unary_rules or {}

        label_index = dict[str, int]()
        for label in labels:
            label_index.setdefault(label, len(label_index))
        for parent, left, right in binary_rules:
            for label in (parent, left, right):
                label_index.setdefault(label, len(label_index))
        for parent, child in unary_rules:
            for label in (parent, child):
                label_index.setdefault(label, len(label_index))

        rules = list[BinaryRule | UnaryRule]()
        scores = list[float]()
        for (parent, left, right), score in binary_rules.items():
            rules.append(BinaryRule(parent, left, right))
            scores.append(float(score))
        num_binary = len(rules)
        for (parent, child), score in unary_rules.items():
            rules.append(UnaryRule(parent, child))
            scores.append(float(score))
        for score in scores:
            if math.isnan(score) or score == math.inf:
                raise GrammarConfigurationError(f"invalid rule score {score}")

        self._labels = tuple(label_index.keys())
        self._label_index = label_index
        self._rules = tuple(rules)
        self._rule_index = {rule: idx for idx, rule in enumerate(rules)}
        self._rule_scores = tuple(scores)
        self._num_binary_rules = num_binary

        N = len(self._labels)
        parent, left, right, child = [], [], [], []
        by_parent = [list[int]() for _ in range(N)]
        by_left = [list[int]() for _ in range(N)]
        by_right = [list[int]() for _ in range(N)]
        unary_by_parent = [list[int]() for _ in range(N)]
        unary_by_child = [list[int]() for _ in range(N)]
        for idx, rule in enumerate(rules):
            a = label_index[rule.parent]
            parent.append(a)
            if isinstance(rule, BinaryRule):
                b, c = label_index[rule.left], label_index[rule.right]
                left.append(b)
                right.append(c)
                child.append(-1)
                by_parent[a].append(idx)
                by_left[b].append(idx)
                by_right[c].append(idx)
            else:
                b = label_index[rule.child]
                left.append(-1)
                right.append(-1)
                child.append(b)
                unary_by_parent[a].append(idx)
                unary_by_child[b].append(idx)

        self._parent = tuple(parent)
        self._left = tuple(left)
        self._right = tuple(right)
        self._child = tuple(child)
        self._binary_by_parent = tuple(map(tuple, by_parent))
        self._binary_by_left = tuple(map(tuple, by_left))
        self._binary_by_right = tuple(map(tuple, by_right))
        self._unary_by_parent = tuple(map(tuple, unary_by_parent))
        self._unary_by_child = tuple(map(tuple, unary_by_child))

        self._check_unary_cycles()

    @classmethod
    def from_nltk(cls, grammar: nltk.CFG) -> Self:
        """
        Build the topology of an `nltk.CFG` or `nltk.PCFG`.

        Lexical productions (`A -> word`) are skipped, see `SimpleLexicon.from_nltk`.
        Scores are log probabilities for `nltk.PCFG` and 0 otherwise.
        """
        binary_rules = dict[tuple[str, str, str], float]()
        unary_rules = dict[tuple[str, str], float]()
        labels = list[str]()

        for prod in grammar.productions():
            assert isinstance(prod, nltk.Production)
            parent, children = prod.lhs().symbol(), prod.rhs()
            labels.append(parent)
            score = math.log(prod.prob()) if hasattr(prod, "prob") else 0.0
            is_nt = [isinstance(x, nltk.Nonterminal) for x in children]

            if len(children) == 1 and not is_nt[0]:  # A -> word
                continue
            if len(children) == 1:  # A -> B
                unary_rules[(parent, children[0].symbol())] = score
            elif len(children) == 2 and all(is_nt):  # A -> B C
                key = (parent, children[0].symbol(), children[1].symbol())
                binary_rules[key] = score
            else:
                raise GrammarConfigurationError(
                    f"production {prod} is neither binary, unary nor lexical"
                )

        return cls(binary_rules, unary_rules, labels=labels)

    def _check_unary_cycles(self) -> None:
        # 0: unvisited, 1: on the current path, 2: done
        state = [0] * self.num_labels
        for start in range(self.num_labels):
            if state[start] != 0:
                continue
            path = [start]
            stack = [iter(self._unary_by_child[start])]
            state[start] = 1
            while stack:
                rule = next(stack[-1], None)
                if rule is None:
                    state[path.pop()] = 2
                    stack.pop()
                    continue
                parent = self._parent[rule]
                if state[parent] == 1:
                    cycle = path[path.index(parent) :] + [parent]
                    names = " -> ".join(self._labels[x] for x in reversed(cycle))
                    raise GrammarConfigurationError(f"unary rule cycle: {names}")
                if state[parent] == 0:
                    state[parent] = 1
                    path.append(parent)
                    stack.append(iter(self._unary_by_child[parent]))

    @property
    def labels(self) -> tuple[str, ...]:
        return self._labels

    @property
    def label_index(self) -> Mapping[str, int]:
        return self._label_index

    @property
    def num_labels(self) -> int:
        return len(self._labels)

    @property
    def rules(self) -> tuple[BinaryRule | UnaryRule, ...]:
        return self._rules

    @property
    def num_rules(self) -> int:
        return len(self._rules)

    @property
    def max_num_binary_rules_for_parent(self) -> int:
        return max(map(len, self._binary_by_parent), default=0)

    def index_of(self, label: str) -> int:
        idx = self._label_index.get(label, None)
        if idx is None:
            raise GrammarConfigurationError(f"unknown label {label!r}")
        return idx

    def rule_index(self, rule: BinaryRule | UnaryRule) -> int:
        idx = self._rule_index.get(rule, None)
        if idx is None:
            raise GrammarConfigurationError(f"unknown rule {rule}")
        return idx

    def is_binary(self, rule: int) -> bool:
        return rule < self._num_binary_rules

    def parent(self, rule: int) -> int:
        return self._parent[rule]

    def left_child(self, rule: int) -> int:
        return self._left[rule]

    def right_child(self, rule: int) -> int:
        return self._right[rule]

    def child(self, rule: int) -> int:
        return self._child[rule]

    def rule_score(self, rule: int) -> float:
        return self._rule_scores[rule]

    def indexed_binary_rules_with_parent(self, label: int) -> tuple[int, ...]:
        return self._binary_by_parent[label]

    def indexed_binary_rules_with_left_child(self, label: int) -> tuple[int, ...]:
        return self._binary_by_left[label]

    def indexed_binary_rules_with_right_child(self, label: int) -> tuple[int, ...]:
        return self._binary_by_right[label]

    def indexed_unary_rules_with_parent(self, label: int) -> tuple[int, ...]:
        return self._unary_by_parent[label]

    def indexed_unary_rules_with_child(self, label: int) -> tuple[int, ...]:
        return self._unary_by_child[label]

import nltk

import logging
import math
from collections import defaultdict
from dataclasses import dataclass
from typing import Callable, Sequence

from .anchoring import CoreAnchoring
from .chart import ChartFactory, ParseChart
from .errors import CoverageError, GrammarConfigurationError
from .lexicon import Lexicon
from .topology import Topology
from .utils import NEG_INF


logger = logging.getLogger(__name__)

# Longest span attempted by default. Spans longer than this are never built, so
# sentences longer than it get no complete parse. This bounds the work spent on
# pathological inputs and is a deliberate limitation.
DEFAULT_MAX_SPAN_LENGTH = 100


@dataclass(frozen=True)
class ChartMarginal:
    """
    Inside and outside charts of one sentence, with the log partition at the root.

    With log-sum charts the marginals are posterior log probabilities; with
    Viterbi charts they are max-marginals relative to the best derivation.
    """

    inside: ParseChart
    outside: ParseChart
    log_partition: float
    labels: tuple[str, ...]

    @property
    def is_parseable(self) -> bool:
        return self.log_partition > NEG_INF

    def span_marginal(self, begin: int, end: int, label: int, top: bool = False) -> float:
        """
        inside + outside - log partition of `label` over [`begin`, `end`).

        :param top: read the cells after unary closure instead of before.
        """
        if not self.is_parseable:
            return NEG_INF
        inside = self.inside.top if top else self.inside.bot
        outside = self.outside.top if top else self.outside.bot
        score = inside.label_score(begin, end, label) + outside.label_score(
            begin, end, label
        )
        if score == NEG_INF:
            return NEG_INF
        return score - self.log_partition

    def label_marginals(self, begin: int, end: int, top: bool = False) -> dict[str, float]:
        """
        Labels with a finite marginal over [`begin`, `end`).
        - Return: dict that map label => marginal log score.
        """
        inside = self.inside.top if top else self.inside.bot
        results = dict[str, float]()
        for label in inside.entered_label_indexes(begin, end):
            score = self.span_marginal(begin, end, label, top=top)
            if score > NEG_INF:
                results[self.labels[label]] = score
        return results


class CkyChartBuilder:
    """
    CKY chart builder over a binary/unary grammar, scored by an anchoring.

    - `build_inside_chart`: bottom-up pass, the inside score of every span and label.
    - `build_outside_chart`: top-down pass over a finished inside chart.
    - `marginal`: both passes plus the log partition.
    - `best_tree`: the best derivation, as `nltk.ProbabilisticTree`.

    Which semiring the charts use (max or log-sum-exp) is decided by `chart_factory`.
    The builder holds no per-sentence state, so one instance may serve many threads.
    """

    def __init__(
        self,
        root: str,
        lexicon: Lexicon,
        topology: Topology,
        chart_factory: ChartFactory = ParseChart.viterbi,
        max_span_length: int | None = DEFAULT_MAX_SPAN_LENGTH,
        on_span_length: Callable[[int], None] | None = None,
    ) -> None:
        """
        :param root: label every complete derivation starts from.
        :param chart_factory: `ParseChart.viterbi` or `ParseChart.log_sum`.
        :param max_span_length: longest span attempted, None for no limit.
        :param on_span_length: called with the span length at the start of each
               span-length iteration of both passes; raise from it to abort the parse.
        """
        if max_span_length is not None and max_span_length < 1:
            raise ValueError(f"max_span_length must be positive, got {max_span_length}")
        self._root = root
        self._root_index = topology.index_of(root)
        if lexicon.labels is not None:
            missing = lexicon.labels - set(topology.label_index)
            if len(missing) > 0:
                raise GrammarConfigurationError(
                    f"lexicon labels missing from the topology: {sorted(missing)}"
                )
        self._lexicon = lexicon
        self._topology = topology
        self._chart_factory = chart_factory
        self._max_span_length = max_span_length
        self._on_span_length = on_span_length

    @property
    def root(self) -> str:
        return self._root

    @property
    def root_index(self) -> int:
        return self._root_index

    @property
    def lexicon(self) -> Lexicon:
        return self._lexicon

    @property
    def topology(self) -> Topology:
        return self._topology

    @property
    def chart_factory(self) -> ChartFactory:
        return self._chart_factory

    @property
    def max_span_length(self) -> int | None:
        return self._max_span_length

    def with_charts(self, chart_factory: ChartFactory) -> "CkyChartBuilder":
        return CkyChartBuilder(
            self._root,
            self._lexicon,
            self._topology,
            chart_factory=chart_factory,
            max_span_length=self._max_span_length,
            on_span_length=self._on_span_length,
        )

    def anchoring(
        self, words: Sequence[object], scorer: CoreAnchoring | None = None
    ) -> CoreAnchoring:
        """
        The anchoring used for `words`: `scorer`, or the identity when it is None.
        """
        if scorer is None:
            return CoreAnchoring.identity(self._topology, self._lexicon, words)
        if scorer.topology is not self._topology:
            raise ValueError("scorer is anchored on another topology")
        if len(scorer.words) != len(words):
            raise ValueError(
                f"scorer covers {len(scorer.words)} words, sentence has {len(words)}"
            )
        return scorer

    def build_inside_chart(
        self, words: Sequence[object], scorer: CoreAnchoring | None = None
    ) -> ParseChart:
        """
        Fill a chart with inside scores, bottom-up.

        Raises `CoverageError` when a word has no label with a finite lexical score.
        """
        words = tuple(words)
        if len(words) == 0:
            raise ValueError("can't parse an empty sentence")
        anchoring = self.anchoring(words, scorer)
        topology = self._topology
        chart = self._chart_factory(words, topology.num_labels)
        tags = anchoring.tag_constraints

        self._notify(1)
        for idx, word in enumerate(words):
            tag_scores = tags.tag_scores(idx)
            if len(tags.allowed_tags(idx)) == 0:
                logger.error("no label for %r at position %d", word, idx)
                raise CoverageError(word, idx, tag_scores)
            for tag, lex_score in tag_scores.items():
                if lex_score == NEG_INF:
                    continue
                label = topology.index_of(tag)
                score = lex_score + anchoring.score_span(idx, idx + 1, label)
                if score > NEG_INF:
                    chart.bot.enter(idx, idx + 1, label, score)
            self._update_inside_unaries(chart, anchoring, idx, idx + 1)

        # A -> B C over [begin, split, end)
        for span in range(2, self._span_cap(len(words)) + 1):
            self._notify(span)
            for begin in range(0, len(words) - span + 1):
                end = begin + span
                for a in range(topology.num_labels):
                    rules = topology.indexed_binary_rules_with_parent(a)
                    if len(rules) == 0:
                        continue
                    pass_score = anchoring.score_span(begin, end, a)
                    if pass_score == NEG_INF:
                        continue

                    scores = list[float]()
                    for rule in rules:
                        b = topology.left_child(rule)
                        c = topology.right_child(rule)
                        rule_score = topology.rule_score(rule)
                        for split in chart.top.feasible_span(begin, end, b, c):
                            b_score = chart.top.label_score(begin, split, b)
                            c_score = chart.top.label_score(split, end, c)
                            span_score = (
                                anchoring.score_binary_rule(begin, split, end, rule)
                                + pass_score
                            )
                            prob = b_score + c_score + rule_score + span_score
                            if prob > NEG_INF:
                                scores.append(prob)
                    # done collecting the splits of all rules, do a single enter
                    chart.bot.enter_many(begin, end, a, scores)

                self._update_inside_unaries(chart, anchoring, begin, end)

        logger.debug(
            "inside chart for %d words, root score %f",
            len(words),
            chart.top.label_score(0, len(words), self._root_index),
        )
        return chart

    def build_outside_chart(
        self, inside: ParseChart, scorer: CoreAnchoring | None = None
    ) -> ParseChart:
        """
        Fill a chart with outside scores, top-down, given a finished `inside` chart.

        `scorer` must be the anchoring the inside chart was built with.
        """
        words = inside.words
        length = inside.length
        anchoring = self.anchoring(words, scorer)
        topology = self._topology
        outside = ParseChart(inside.layer_type, words, topology.num_labels)
        outside.top.enter(0, length, self._root_index, 0.0)

        for span in range(length, 0, -1):
            self._notify(span)
            for begin in range(0, length - span + 1):
                end = begin + span
                self._update_outside_unaries(outside, anchoring, begin, end)
                if span == 1:
                    continue

                # A -> B C over [begin, split, end)
                pending = defaultdict[tuple[int, int, int], list[float]](list)
                for a in outside.bot.entered_label_indexes(begin, end):
                    pass_score = anchoring.score_span(begin, end, a)
                    if pass_score + inside.bot.label_score(begin, end, a) == NEG_INF:
                        continue
                    a_outside = outside.bot.label_score(begin, end, a)
                    for rule in topology.indexed_binary_rules_with_parent(a):
                        b = topology.left_child(rule)
                        c = topology.right_child(rule)
                        score = a_outside + topology.rule_score(rule)
                        for split in inside.top.feasible_span(begin, end, b, c):
                            b_inside = inside.top.label_score(begin, split, b)
                            c_inside = inside.top.label_score(split, end, c)
                            span_score = (
                                anchoring.score_binary_rule(begin, split, end, rule)
                                + pass_score
                            )
                            b_outside = score + c_inside + span_score
                            if b_outside > NEG_INF:
                                pending[(begin, split, b)].append(b_outside)
                            c_outside = score + b_inside + span_score
                            if c_outside > NEG_INF:
                                pending[(split, end, c)].append(c_outside)

                for (child_begin, child_end, label), scores in pending.items():
                    outside.top.enter_many(child_begin, child_end, label, scores)

        return outside

    def marginal(
        self, words: Sequence[object], scorer: CoreAnchoring | None = None
    ) -> ChartMarginal:
        """
        Run both passes over `words`.

        A sentence without any derivation gives `is_parseable == False` rather than an error.
        """
        words = tuple(words)
        anchoring = self.anchoring(words, scorer)
        inside = self.build_inside_chart(words, anchoring)
        outside = self.build_outside_chart(inside, anchoring)
        log_partition = inside.top.label_score(0, len(words), self._root_index)
        if log_partition == NEG_INF:
            logger.debug("no derivation of %r for %s", self._root, list(words))
        return ChartMarginal(inside, outside, log_partition, self._topology.labels)

    def log_partition(
        self, words: Sequence[object], scorer: CoreAnchoring | None = None
    ) -> float:
        words = tuple(words)
        inside = self.build_inside_chart(words, scorer)
        return inside.top.label_score(0, len(words), self._root_index)

    def best_tree(
        self, words: Sequence[object], scorer: CoreAnchoring | None = None
    ) -> nltk.ProbabilisticTree | None:
        """
        Return the derivation with max score of the given sentence.
        Return None if no such a tree.
        """
        words = tuple(words)
        anchoring = self.anchoring(words, scorer)
        builder = self if self._builds_viterbi() else self.with_charts(ParseChart.viterbi)
        inside = builder.build_inside_chart(words, anchoring)
        return self.viterbi_tree(inside, anchoring)

    def viterbi_tree(
        self, inside: ParseChart, scorer: CoreAnchoring | None = None
    ) -> nltk.ProbabilisticTree | None:
        """
        Trace the best derivation back from the root of a Viterbi inside chart.

        Each node is the first rule (in index order) whose score reproduces the cell.
        """
        if not inside.is_viterbi:
            raise ValueError("best derivations can only be read from Viterbi charts")
        words = inside.words
        anchoring = self.anchoring(words, scorer)
        topology = self._topology
        top_mask = anchoring.sparsity_pattern.top
        if inside.top.label_score(0, len(words), self._root_index) == NEG_INF:
            return None

        def node(label: int, children: list, score: float) -> nltk.ProbabilisticTree:
            # nltk keeps base-2 log probabilities, exp(score) overflows past ~709
            return nltk.ProbabilisticTree(
                topology.labels[label], children, logprob=score / math.log(2)
            )

        def recur_top(begin: int, end: int, a: int) -> nltk.ProbabilisticTree:
            score = inside.top.label_score(begin, end, a)
            if top_mask.is_allowed_labeled_span(begin, end, a) and _same_score(
                inside.bot.label_score(begin, end, a), score
            ):
                return recur_bot(begin, end, a)
            for rule in topology.indexed_unary_rules_with_parent(a):
                b = topology.child(rule)
                cand = (
                    topology.rule_score(rule)
                    + inside.bot.label_score(begin, end, b)
                    + anchoring.score_unary_rule(begin, end, rule)
                )
                if _same_score(cand, score):
                    return node(a, [recur_bot(begin, end, b)], score)
            raise AssertionError(f"no unary step reproduces top cell {a} over [{begin}, {end})")

        def recur_bot(begin: int, end: int, a: int) -> nltk.ProbabilisticTree:
            score = inside.bot.label_score(begin, end, a)
            if end - begin == 1:  # leaf
                return node(a, [words[begin]], score)
            pass_score = anchoring.score_span(begin, end, a)
            for rule in topology.indexed_binary_rules_with_parent(a):
                b = topology.left_child(rule)
                c = topology.right_child(rule)
                for split in inside.top.feasible_span(begin, end, b, c):
                    cand = (
                        inside.top.label_score(begin, split, b)
                        + inside.top.label_score(split, end, c)
                        + topology.rule_score(rule)
                        + anchoring.score_binary_rule(begin, split, end, rule)
                        + pass_score
                    )
                    if _same_score(cand, score):
                        left_tree = recur_top(begin, split, b)
                        right_tree = recur_top(split, end, c)
                        return node(a, [left_tree, right_tree], score)
            raise AssertionError(f"no binary rule reproduces bot cell {a} over [{begin}, {end})")

        return recur_top(0, len(words), self._root_index)

    def _builds_viterbi(self) -> bool:
        return self._chart_factory == ParseChart.viterbi

    def _span_cap(self, length: int) -> int:
        if self._max_span_length is None or length <= self._max_span_length:
            return length
        logger.warning(
            "sentence of %d words exceeds max span length %d, longer spans are not built",
            length,
            self._max_span_length,
        )
        return self._max_span_length

    def _notify(self, span_length: int) -> None:
        if self._on_span_length is not None:
            self._on_span_length(span_length)

    def _update_inside_unaries(
        self, chart: ParseChart, anchoring: CoreAnchoring, begin: int, end: int
    ) -> None:
        """
        top(A) = bot(A) plus every A -> B applied once to bot(B).

        The bot(A) term is dropped where the top layer of the sparsity pattern forbids A.
        """
        topology = self._topology
        top_mask = anchoring.sparsity_pattern.top
        pending = defaultdict[int, list[float]](list)
        for b in chart.bot.entered_label_indexes(begin, end):
            b_score = chart.bot.label_score(begin, end, b)
            if top_mask.is_allowed_labeled_span(begin, end, b):
                pending[b].append(b_score)
            for rule in topology.indexed_unary_rules_with_child(b):
                a = topology.parent(rule)
                prob = (
                    topology.rule_score(rule)
                    + b_score
                    + anchoring.score_unary_rule(begin, end, rule)
                )
                if prob > NEG_INF:
                    pending[a].append(prob)
        for a, scores in pending.items():
            chart.top.enter_many(begin, end, a, scores)

    def _update_outside_unaries(
        self, outside: ParseChart, anchoring: CoreAnchoring, begin: int, end: int
    ) -> None:
        """
        Mirror image of `_update_inside_unaries`: push top outside scores down to bot.
        """
        topology = self._topology
        top_mask = anchoring.sparsity_pattern.top
        pending = defaultdict[int, list[float]](list)
        for a in outside.top.entered_label_indexes(begin, end):
            a_score = outside.top.label_score(begin, end, a)
            if top_mask.is_allowed_labeled_span(begin, end, a):
                pending[a].append(a_score)
            for rule in topology.indexed_unary_rules_with_parent(a):
                b = topology.child(rule)
                prob = (
                    a_score
                    + topology.rule_score(rule)
                    + anchoring.score_unary_rule(begin, end, rule)
                )
                if prob > NEG_INF:
                    pending[b].append(prob)
        for b, scores in pending.items():
            outside.bot.enter_many(begin, end, b, scores)


def _same_score(a: float, b: float) -> bool:
    return a > NEG_INF and math.isclose(a, b, rel_tol=1e-9, abs_tol=1e-9)

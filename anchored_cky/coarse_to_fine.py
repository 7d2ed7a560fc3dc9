import nltk

import logging
from typing import Callable, Sequence, override

from .anchoring import CoreAnchoring
from .chart import ChartFactory, ParseChart
from .errors import CoarseParseFailure, GrammarConfigurationError
from .lexicon import Lexicon, LexiconAnchor
from .parser import DEFAULT_MAX_SPAN_LENGTH, ChartMarginal, CkyChartBuilder
from .topology import Topology
from .utils import NEG_INF


logger = logging.getLogger(__name__)

# Posterior log probability a coarse label must exceed to keep its fine labels.
DEFAULT_THRESHOLD = -10.0


def project_labels(
    coarse: Topology, fine: Topology, projection: Callable[[str], str]
) -> tuple[int, ...]:
    """
    Index the projection of fine labels onto coarse labels.
    - Return: tuple that map fine label index => coarse label index.
    """
    results = list[int]()
    for label in fine.labels:
        target = projection(label)
        if target not in coarse.label_index:
            raise GrammarConfigurationError(
                f"fine label {label!r} projects onto unknown coarse label {target!r}"
            )
        results.append(coarse.label_index[target])
    return tuple(results)


class CoarsePosteriorAnchoring(CoreAnchoring):
    """
    Pruning mask for a fine grammar, read off the charts of a coarse grammar.

    A fine label over a span scores 0 when the posterior of its coarse projection,
    `inside + outside - sentence log probability` on the bot cells, is above
    `threshold`, and -inf otherwise. Rules always score 0: pruning happens per
    span and label only.
    """

    def __init__(
        self,
        topology: Topology,
        lexicon: Lexicon,
        words: Sequence[object],
        projection: Sequence[int],
        coarse_inside: ParseChart,
        coarse_outside: ParseChart,
        sentence_log_prob: float,
        threshold: float = DEFAULT_THRESHOLD,
        lexicon_anchor: LexiconAnchor | None = None,
    ) -> None:
        """
        :param projection: tuple that map fine label index => coarse label index
        """
        super().__init__(topology, lexicon, words, lexicon_anchor=lexicon_anchor)
        assert len(projection) == topology.num_labels
        assert coarse_inside.length == coarse_outside.length == len(self.words)
        self._projection = tuple(projection)
        self._coarse_inside = coarse_inside
        self._coarse_outside = coarse_outside
        self._sentence_log_prob = sentence_log_prob
        self._threshold = threshold

    @property
    def threshold(self) -> float:
        return self._threshold

    @property
    def sentence_log_prob(self) -> float:
        return self._sentence_log_prob

    def posterior(self, begin: int, end: int, label: int) -> float:
        coarse = self._projection[label]
        score = self._coarse_inside.bot.label_score(
            begin, end, coarse
        ) + self._coarse_outside.bot.label_score(begin, end, coarse)
        if score == NEG_INF:
            return NEG_INF
        return score - self._sentence_log_prob

    @override
    def score_binary_rule(self, begin: int, split: int, end: int, rule: int) -> float:
        return 0.0

    @override
    def score_unary_rule(self, begin: int, end: int, rule: int) -> float:
        return 0.0

    @override
    def score_span(self, begin: int, end: int, label: int) -> float:
        return 0.0 if self.posterior(begin, end, label) > self._threshold else NEG_INF


def coarse_span_scorer_from_parser(
    words: Sequence[object],
    coarse_parser: CkyChartBuilder,
    fine_topology: Topology,
    fine_lexicon: Lexicon,
    projection: Sequence[int],
    threshold: float = DEFAULT_THRESHOLD,
) -> CoarsePosteriorAnchoring:
    """
    Run the coarse parser over `words`, unconstrained, and turn its posteriors
    into a pruning anchoring over the fine grammar.

    Raises `CoarseParseFailure` when the coarse grammar can't derive the sentence.
    """
    words = tuple(words)
    coarse_inside = coarse_parser.build_inside_chart(words)
    sentence_log_prob = coarse_inside.top.label_score(
        0, len(words), coarse_parser.root_index
    )
    if sentence_log_prob == NEG_INF:
        raise CoarseParseFailure(words)
    coarse_outside = coarse_parser.build_outside_chart(coarse_inside)
    logger.debug("coarse sentence log probability %f", sentence_log_prob)

    return CoarsePosteriorAnchoring(
        fine_topology,
        fine_lexicon,
        words,
        projection,
        coarse_inside,
        coarse_outside,
        sentence_log_prob,
        threshold=threshold,
    )


class CoarseToFineChartBuilder:
    """
    Chart builder for a fine grammar, pruned by the posteriors of a coarse grammar.

    Every sentence is parsed twice: once, unconstrained, by `coarse_parser`, and
    once by the fine grammar restricted to the labels whose coarse projection
    survives `threshold`.
    """

    def __init__(
        self,
        coarse_parser: CkyChartBuilder,
        projection: Callable[[str], str],
        root: str,
        lexicon: Lexicon,
        topology: Topology,
        chart_factory: ChartFactory = ParseChart.viterbi,
        threshold: float = DEFAULT_THRESHOLD,
        max_span_length: int | None = DEFAULT_MAX_SPAN_LENGTH,
    ) -> None:
        """
        :param projection: function that map fine label => coarse label
        :param threshold: posterior log probability to keep a label, -inf keeps
               everything the coarse grammar can derive.
        """
        self._coarse_parser = coarse_parser
        self._projection = projection
        self._indexed_projection = project_labels(
            coarse_parser.topology, topology, projection
        )
        if projection(root) != coarse_parser.root:
            raise GrammarConfigurationError(
                f"fine root {root!r} projects onto {projection(root)!r}, "
                f"coarse root is {coarse_parser.root!r}"
            )
        self._threshold = threshold
        self._fine_parser = CkyChartBuilder(
            root,
            lexicon,
            topology,
            chart_factory=chart_factory,
            max_span_length=max_span_length,
        )

    @property
    def coarse_parser(self) -> CkyChartBuilder:
        return self._coarse_parser

    @property
    def fine_parser(self) -> CkyChartBuilder:
        return self._fine_parser

    @property
    def root(self) -> str:
        return self._fine_parser.root

    @property
    def root_index(self) -> int:
        return self._fine_parser.root_index

    @property
    def topology(self) -> Topology:
        return self._fine_parser.topology

    @property
    def lexicon(self) -> Lexicon:
        return self._fine_parser.lexicon

    @property
    def threshold(self) -> float:
        return self._threshold

    def with_charts(self, chart_factory: ChartFactory) -> "CoarseToFineChartBuilder":
        """
        Same pruning, with `chart_factory` for the fine charts only.
        """
        return CoarseToFineChartBuilder(
            self._coarse_parser,
            self._projection,
            self.root,
            self.lexicon,
            self.topology,
            chart_factory=chart_factory,
            threshold=self._threshold,
            max_span_length=self._fine_parser.max_span_length,
        )

    def pruning_anchoring(
        self, words: Sequence[object], scorer: CoreAnchoring | None = None
    ) -> CoreAnchoring:
        """
        The coarse pruning mask for `words`, multiplied with `scorer` when given.
        """
        words = tuple(words)
        pruner = coarse_span_scorer_from_parser(
            words,
            self._coarse_parser,
            self.topology,
            self.lexicon,
            self._indexed_projection,
            threshold=self._threshold,
        )
        if scorer is None:
            return pruner
        return pruner * self._fine_parser.anchoring(words, scorer)

    def build_inside_chart(
        self, words: Sequence[object], scorer: CoreAnchoring | None = None
    ) -> ParseChart:
        words = tuple(words)
        return self._fine_parser.build_inside_chart(
            words, self.pruning_anchoring(words, scorer)
        )

    def build_outside_chart(
        self, inside: ParseChart, scorer: CoreAnchoring | None = None
    ) -> ParseChart:
        """
        Outside pass of the fine grammar. Pruned cells are already -inf in `inside`,
        so the pruning mask isn't needed again.
        """
        return self._fine_parser.build_outside_chart(inside, scorer)

    def marginal(
        self, words: Sequence[object], scorer: CoreAnchoring | None = None
    ) -> ChartMarginal:
        words = tuple(words)
        return self._fine_parser.marginal(words, self.pruning_anchoring(words, scorer))

    def log_partition(
        self, words: Sequence[object], scorer: CoreAnchoring | None = None
    ) -> float:
        words = tuple(words)
        return self._fine_parser.log_partition(
            words, self.pruning_anchoring(words, scorer)
        )

    def best_tree(
        self, words: Sequence[object], scorer: CoreAnchoring | None = None
    ) -> nltk.ProbabilisticTree | None:
        words = tuple(words)
        return self._fine_parser.best_tree(words, self.pruning_anchoring(words, scorer))

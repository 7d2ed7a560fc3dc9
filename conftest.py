"""Shared toy grammars and helpers for the test suite."""

import math
import itertools

import pytest

from anchored_cky import (
    CkyChartBuilder,
    CoreAnchoring,
    ParseChart,
    SimpleLexicon,
    Topology,
)


SENTENCE = ("i", "saw", "the", "man", "with", "the", "telescope")


def _pp_attachment_rules() -> tuple[dict, dict, dict]:
    """
    S -> NP VP (1.0)
    VP -> V NP (0.6) | VP PP (0.4)
    NP -> D N (0.5) | NP PP (0.2) | N (0.3)
    PP -> P NP (1.0)
    """
    log = math.log
    binary = {
        ("S", "NP", "VP"): log(1.0),
        ("VP", "V", "NP"): log(0.6),
        ("VP", "VP", "PP"): log(0.4),
        ("NP", "D", "N"): log(0.5),
        ("NP", "NP", "PP"): log(0.2),
        ("PP", "P", "NP"): log(1.0),
    }
    unary = {("NP", "N"): log(0.3)}
    lexicon = {
        "i": {"N": log(0.2)},
        "saw": {"V": log(1.0), "N": log(0.1)},
        "the": {"D": log(1.0)},
        "man": {"N": log(0.3)},
        "with": {"P": log(1.0)},
        "telescope": {"N": log(0.2)},
        "dog": {"N": log(0.2)},
        "barks": {"V": log(0.5), "N": -math.inf},
    }
    return binary, unary, lexicon


@pytest.fixture
def sentence():
    return SENTENCE


@pytest.fixture
def pp_rules():
    return _pp_attachment_rules()


@pytest.fixture
def pp_topology(pp_rules):
    binary, unary, _ = pp_rules
    return Topology(binary, unary)


@pytest.fixture
def pp_lexicon(pp_rules):
    return SimpleLexicon(pp_rules[2])


@pytest.fixture
def viterbi_parser(pp_topology, pp_lexicon):
    return CkyChartBuilder("S", pp_lexicon, pp_topology)


@pytest.fixture
def log_sum_parser(pp_topology, pp_lexicon):
    return CkyChartBuilder(
        "S", pp_lexicon, pp_topology, chart_factory=ParseChart.log_sum
    )


def _split_label(label: str, split: str, k: int) -> list[str]:
    return [f"{label}-{i}" for i in range(k)] if label == split else [label]


@pytest.fixture
def split_pp_grammar(pp_rules):
    """
    The PP attachment grammar with NP split into NP-0 and NP-1.

    Rule weights of NP-1 are halved so that the split is not symmetric.
    Projecting `X-i` back to `X` gives the unsplit grammar.
    """
    binary, unary, lexicon = pp_rules
    fine_binary, fine_unary = dict(), dict()
    for (parent, left, right), score in binary.items():
        for p, l, r in itertools.product(
            *(_split_label(x, "NP", 2) for x in (parent, left, right))
        ):
            penalty = sum(math.log(0.5) for x in (p, l, r) if x == "NP-1")
            fine_binary[(p, l, r)] = score + penalty
    for (parent, child), score in unary.items():
        for p, c in itertools.product(
            *(_split_label(x, "NP", 2) for x in (parent, child))
        ):
            fine_unary[(p, c)] = score
    fine_topology = Topology(fine_binary, fine_unary)
    fine_lexicon = SimpleLexicon(lexicon)

    def projection(label: str) -> str:
        return label.split("-")[0]

    return fine_topology, fine_lexicon, projection


@pytest.fixture
def enumerate_derivations():
    """
    Brute-force enumeration of every derivation of a sentence.

    Follows the same derivation shape as the chart: a bot label is a word or a
    binary rule over two top labels, a top label is a bot label of the same name
    or one unary rule over a bot label.

    `top_allowed` drops top labels, the way the top layer of a sparsity pattern does.

    Returns a function that yields (log score, frozenset of (layer, begin, end, label)).
    """

    def run(binary, unary, lexicon, words, root, span_score=None, top_allowed=None):
        span_score = span_score or (lambda begin, end, label: 0.0)
        top_allowed = top_allowed or (lambda begin, end, label: True)

        def top(begin, end, label):
            if not top_allowed(begin, end, label):
                return
            for score, items in bot(begin, end, label):
                yield score, items | {("top", begin, end, label)}
            for (parent, child), rule_score in unary.items():
                if parent != label:
                    continue
                for score, items in bot(begin, end, child):
                    yield rule_score + score, items | {("top", begin, end, label)}

        def bot(begin, end, label):
            extra = span_score(begin, end, label)
            if extra == -math.inf:
                return
            item = frozenset({("bot", begin, end, label)})
            if end - begin == 1:
                score = lexicon.get(words[begin], {}).get(label, -math.inf)
                if score > -math.inf:
                    yield score + extra, item
                return
            for (parent, left, right), rule_score in binary.items():
                if parent != label:
                    continue
                for split in range(begin + 1, end):
                    for (l_score, l_items), (r_score, r_items) in itertools.product(
                        list(top(begin, split, left)), list(top(split, end, right))
                    ):
                        yield (
                            rule_score + l_score + r_score + extra,
                            item | l_items | r_items,
                        )

        return list(top(0, len(words), root))

    return run


def log_sum_exp(scores) -> float:
    scores = list(scores)
    if len(scores) == 0:
        return -math.inf
    best = max(scores)
    if best == -math.inf:
        return best
    return best + math.log(sum(math.exp(x - best) for x in scores))


@pytest.fixture
def logsumexp():
    return log_sum_exp


class BonusAnchoring(CoreAnchoring):
    """
    Adds a constant to every binary rule, every unary rule and every span,
    the span bonus scaled by (label index + 1) so labels score differently.
    """

    def __init__(self, topology, lexicon, words, binary=0.0, unary=0.0, span=0.0):
        super().__init__(topology, lexicon, words)
        self.binary, self.unary, self.span = binary, unary, span

    def score_binary_rule(self, begin, split, end, rule):
        return self.binary

    def score_unary_rule(self, begin, end, rule):
        return self.unary

    def score_span(self, begin, end, label):
        return self.span * (label + 1)


@pytest.fixture
def bonus_anchoring():
    return BonusAnchoring

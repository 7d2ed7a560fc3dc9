import nltk
import pytest

import logging
import math

from anchored_cky import (
    ChartConstraints,
    CkyChartBuilder,
    CoreAnchoring,
    CoverageError,
    GrammarConfigurationError,
    LabeledSpanConstraints,
    Lexicon,
    ParseChart,
    SimpleLexicon,
    Topology,
    tree_to_spans,
)


def flat(tree: nltk.Tree) -> str:
    return tree.pformat(margin=1000)


def test_np_vp_leaf_spans():
    """
    "the dog" is tagged NP directly and "barks" VP directly.
    """
    topology = Topology({("S", "NP", "VP"): 0.0})
    lexicon = SimpleLexicon(
        {
            "the dog": {"NP": 0.0, "VP": -math.inf},
            "barks": {"VP": 0.0, "NP": -math.inf},
        }
    )
    words = ["the dog", "barks"]
    for factory in (ParseChart.viterbi, ParseChart.log_sum):
        parser = CkyChartBuilder("S", lexicon, topology, chart_factory=factory)
        inside = parser.build_inside_chart(words)
        assert inside.top.label_score(0, 2, topology.index_of("S")) == 0.0
        assert parser.marginal(words).log_partition == 0.0


def test_np_vp_three_tokens():
    topology = Topology({("S", "NP", "VP"): 0.0, ("NP", "DT", "NN"): 0.0})
    lexicon = SimpleLexicon(
        {
            "the": {"DT": 0.0, "NN": -math.inf},
            "dog": {"NN": 0.0, "DT": -math.inf},
            "barks": {"VP": 0.0},
        }
    )
    parser = CkyChartBuilder("S", lexicon, topology, chart_factory=ParseChart.log_sum)
    words = ["the", "dog", "barks"]
    inside = parser.build_inside_chart(words)
    assert inside.top.label_score(0, 3, topology.index_of("S")) == 0.0
    assert parser.log_partition(words) == 0.0
    tree = parser.best_tree(words)
    assert flat(tree) == "(S (NP (DT the) (NN dog)) (VP barks))"
    assert tree.prob() == 1.0


def test_unknown_word_raises_coverage_error(viterbi_parser):
    with pytest.raises(CoverageError) as info:
        viterbi_parser.build_inside_chart(["i", "saw", "a", "man"])
    assert info.value.word == "a"
    assert info.value.position == 2
    assert info.value.tag_scores == {}


def test_all_disallowed_tags_raise_coverage_error(pp_topology):
    lexicon = SimpleLexicon({"i": {"N": 0.0}, "saw": {"V": -math.inf, "N": -math.inf}})
    parser = CkyChartBuilder("S", lexicon, pp_topology)
    with pytest.raises(CoverageError) as info:
        parser.marginal(["i", "saw"])
    assert info.value.tag_scores == {"V": -math.inf, "N": -math.inf}
    assert "saw" in str(info.value)


def test_lexicon_label_unknown_to_topology(pp_topology):
    with pytest.raises(GrammarConfigurationError) as info:
        CkyChartBuilder("S", SimpleLexicon({"i": {"X": 0.0}}), pp_topology)
    assert "X" in str(info.value)
    # unknown-word labels count as well
    with pytest.raises(GrammarConfigurationError):
        CkyChartBuilder("S", SimpleLexicon({}, unknown_word_scores={"Y": 0.0}), pp_topology)


def test_lexicon_without_label_list(pp_topology):
    class UppercaseLexicon(Lexicon):
        def score_tags(self, words, position):
            return {str(words[position]).upper(): 0.0}

    parser = CkyChartBuilder("S", UppercaseLexicon(), pp_topology)
    assert parser.build_inside_chart(["n"]).bot.label_score(0, 1, pp_topology.index_of("N")) == 0.0
    with pytest.raises(GrammarConfigurationError):
        parser.build_inside_chart(["x"])


def test_unknown_root(pp_topology, pp_lexicon):
    with pytest.raises(GrammarConfigurationError):
        CkyChartBuilder("ROOT", pp_lexicon, pp_topology)


def test_empty_sentence(viterbi_parser):
    with pytest.raises(ValueError):
        viterbi_parser.build_inside_chart([])


def test_no_parse_is_not_an_error(log_sum_parser, viterbi_parser):
    marginal = log_sum_parser.marginal(["saw", "saw"])
    assert not marginal.is_parseable
    assert marginal.log_partition == -math.inf
    assert marginal.span_marginal(0, 1, 0) == -math.inf
    assert viterbi_parser.best_tree(["saw", "saw"]) is None


def test_inside_matches_enumeration(
    pp_rules, pp_topology, log_sum_parser, viterbi_parser, sentence,
    enumerate_derivations, logsumexp,
):
    derivations = enumerate_derivations(*pp_rules, sentence, "S")
    assert len(derivations) == 2

    scores = [score for score, _ in derivations]
    assert log_sum_parser.log_partition(sentence) == pytest.approx(logsumexp(scores))
    assert viterbi_parser.log_partition(sentence) == pytest.approx(max(scores))


def test_marginals_match_enumeration(
    pp_rules, pp_topology, log_sum_parser, sentence, enumerate_derivations, logsumexp
):
    derivations = enumerate_derivations(*pp_rules, sentence, "S")
    marginal = log_sum_parser.marginal(sentence)
    log_z = marginal.log_partition

    for begin in range(len(sentence)):
        for end in range(begin + 1, len(sentence) + 1):
            for label, name in enumerate(pp_topology.labels):
                for layer in ("bot", "top"):
                    expected = logsumexp(
                        score
                        for score, items in derivations
                        if (layer, begin, end, name) in items
                    )
                    expected = expected - log_z if expected > -math.inf else -math.inf
                    got = marginal.span_marginal(begin, end, label, top=layer == "top")
                    assert got == pytest.approx(expected, abs=1e-6), (layer, begin, end, name)


def test_inside_outside_consistency(log_sum_parser, pp_topology, sentence, logsumexp):
    marginal = log_sum_parser.marginal(sentence)
    n = len(sentence)

    # summed over all labels at the root span, inside + outside gives the partition
    root_scores = [
        marginal.inside.top.label_score(0, n, label)
        + marginal.outside.top.label_score(0, n, label)
        for label in range(pp_topology.num_labels)
    ]
    assert logsumexp(root_scores) == pytest.approx(marginal.log_partition, abs=1e-6)

    # every derivation has exactly one bot label per word
    for idx in range(n):
        posteriors = marginal.label_marginals(idx, idx + 1)
        assert sum(math.exp(x) for x in posteriors.values()) == pytest.approx(1.0)
    assert set(marginal.label_marginals(1, 2)) == {"V"}


def test_viterbi_tree(viterbi_parser, sentence):
    tree = viterbi_parser.best_tree(sentence)
    assert isinstance(tree, nltk.ProbabilisticTree)
    assert tree.leaves() == list(sentence)
    # VP attachment: 0.4 * 0.6 beats NP attachment 0.6 * 0.2
    assert ("VP", 1, 4) in tree_to_spans(tree)
    assert ("NP", 0, 1) in tree_to_spans(tree)
    assert math.log(tree.prob()) == pytest.approx(viterbi_parser.log_partition(sentence))


def test_viterbi_tree_from_log_sum_builder(log_sum_parser, viterbi_parser, sentence):
    assert str(log_sum_parser.best_tree(sentence)) == str(viterbi_parser.best_tree(sentence))
    with pytest.raises(ValueError):
        log_sum_parser.viterbi_tree(log_sum_parser.build_inside_chart(sentence))


def test_forbidden_site_is_never_used(pp_topology, pp_lexicon, viterbi_parser, sentence):
    vp = pp_topology.index_of("VP")
    mask = LabeledSpanConstraints.from_forbidden(
        len(sentence), pp_topology.num_labels, [(1, 4, vp)]
    )
    scorer = CoreAnchoring.identity(
        pp_topology, pp_lexicon, sentence, ChartConstraints(top=mask, bot=mask)
    )
    inside = viterbi_parser.build_inside_chart(sentence, scorer)
    assert inside.bot.label_score(1, 4, vp) == -math.inf
    assert inside.top.label_score(1, 4, vp) == -math.inf

    tree = viterbi_parser.viterbi_tree(inside, scorer)
    spans = tree_to_spans(tree)
    assert ("VP", 1, 4) not in spans
    assert ("NP", 2, 7) in spans
    assert math.log(tree.prob()) < viterbi_parser.log_partition(sentence)


def test_top_only_mask_matches_enumeration(
    pp_rules, pp_topology, pp_lexicon, log_sum_parser, sentence,
    enumerate_derivations, logsumexp,
):
    vp = pp_topology.index_of("VP")
    top = LabeledSpanConstraints.from_forbidden(
        len(sentence), pp_topology.num_labels, [(1, 4, vp)]
    )
    scorer = CoreAnchoring.identity(
        pp_topology,
        pp_lexicon,
        sentence,
        ChartConstraints(top=top, bot=LabeledSpanConstraints.no_sparsity()),
    )
    derivations = enumerate_derivations(
        *pp_rules,
        sentence,
        "S",
        top_allowed=lambda b, e, label: top.is_allowed_labeled_span(
            b, e, pp_topology.index_of(label)
        ),
    )
    assert len(derivations) == 1

    marginal = log_sum_parser.marginal(sentence, scorer)
    assert marginal.log_partition == pytest.approx(derivations[0][0])
    # VP over [1, 4) is still built bottom-up, it just can't be used
    assert marginal.inside.bot.label_score(1, 4, vp) > -math.inf
    assert marginal.inside.top.label_score(1, 4, vp) == -math.inf
    assert marginal.outside.bot.label_score(1, 4, vp) == -math.inf

    log_z = marginal.log_partition
    for begin in range(len(sentence)):
        for end in range(begin + 1, len(sentence) + 1):
            for label, name in enumerate(pp_topology.labels):
                for layer in ("bot", "top"):
                    expected = logsumexp(
                        score
                        for score, items in derivations
                        if (layer, begin, end, name) in items
                    )
                    expected = expected - log_z if expected > -math.inf else -math.inf
                    got = marginal.span_marginal(begin, end, label, top=layer == "top")
                    assert got == pytest.approx(expected, abs=1e-6), (layer, begin, end, name)

    tree = log_sum_parser.best_tree(sentence, scorer)
    assert ("VP", 1, 4) not in tree_to_spans(tree)
    assert math.log(tree.prob()) == pytest.approx(log_z)


def test_binary_scorer_shifts_partition(
    log_sum_parser, pp_topology, pp_lexicon, sentence, bonus_anchoring
):
    # every binary tree over n words has n - 1 binary nodes
    scorer = bonus_anchoring(pp_topology, pp_lexicon, sentence, binary=-0.5)
    shifted = log_sum_parser.log_partition(sentence, scorer)
    plain = log_sum_parser.log_partition(sentence)
    assert shifted == pytest.approx(plain - 0.5 * (len(sentence) - 1))


def test_best_tree_with_large_scores(bonus_anchoring):
    topology = Topology({("S", "S", "S"): 0.0})
    lexicon = SimpleLexicon({"a": {"S": 0.0}})
    parser = CkyChartBuilder("S", lexicon, topology)
    words = ["a"] * 4
    # 3 binary nodes, far beyond what exp() can represent
    scorer = bonus_anchoring(topology, lexicon, words, binary=400.0)
    tree = parser.best_tree(words, scorer)
    assert tree.leaves() == words
    assert tree.logprob() * math.log(2) == pytest.approx(1200.0)
    assert parser.log_partition(words, scorer) == pytest.approx(1200.0)


def test_span_scorer_matches_enumeration(
    pp_rules, pp_topology, pp_lexicon, log_sum_parser, sentence,
    enumerate_derivations, logsumexp, bonus_anchoring,
):
    scorer = bonus_anchoring(pp_topology, pp_lexicon, sentence, unary=-1.0, span=0.1)
    binary, unary, lexicon = pp_rules
    shifted_unary = {k: v - 1.0 for k, v in unary.items()}
    derivations = enumerate_derivations(
        binary,
        shifted_unary,
        lexicon,
        sentence,
        "S",
        span_score=lambda b, e, label: 0.1 * (pp_topology.index_of(label) + 1),
    )
    marginal = log_sum_parser.marginal(sentence, scorer)
    assert marginal.log_partition == pytest.approx(logsumexp(s for s, _ in derivations))

    np_ = pp_topology.index_of("NP")
    expected = logsumexp(s for s, items in derivations if ("bot", 2, 7, "NP") in items)
    assert marginal.span_marginal(2, 7, np_) == pytest.approx(
        expected - marginal.log_partition
    )


def test_product_then_quotient_restores_partition(
    log_sum_parser, pp_topology, pp_lexicon, sentence, bonus_anchoring
):
    a = bonus_anchoring(pp_topology, pp_lexicon, sentence, binary=-0.3, span=0.2)
    b = bonus_anchoring(pp_topology, pp_lexicon, sentence, unary=0.7, span=-0.4)
    assert log_sum_parser.log_partition(sentence, (a * b) / b) == pytest.approx(
        log_sum_parser.log_partition(sentence, a)
    )


def test_scorer_must_match_sentence(viterbi_parser, pp_topology, pp_lexicon, sentence):
    scorer = CoreAnchoring.identity(pp_topology, pp_lexicon, sentence[:3])
    with pytest.raises(ValueError):
        viterbi_parser.build_inside_chart(sentence, scorer)
    other = Topology({("S", "NP", "VP"): 0.0})
    scorer = CoreAnchoring.identity(other, pp_lexicon, sentence)
    with pytest.raises(ValueError):
        viterbi_parser.build_inside_chart(sentence, scorer)


def test_unary_closure_applies_once():
    topology = Topology({("S", "A", "A"): 0.0}, {("A", "B"): -1.0, ("B", "C"): -1.0})
    lexicon = SimpleLexicon({"b": {"B": 0.0}, "c": {"C": 0.0}})
    parser = CkyChartBuilder("S", lexicon, topology)
    a, b = topology.index_of("A"), topology.index_of("B")

    inside = parser.build_inside_chart(["b", "c"])
    assert inside.top.label_score(0, 1, a) == -1.0
    assert inside.top.label_score(0, 1, b) == 0.0
    assert inside.top.label_score(1, 2, b) == -1.0
    # C -> B -> A would take two unary steps
    assert inside.top.label_score(1, 2, a) == -math.inf
    assert parser.best_tree(["b", "c"]) is None
    assert flat(parser.best_tree(["b", "b"])) == "(S (A (B b)) (A (B b)))"


def test_count_trees_with_cfg():
    grammar = nltk.CFG.fromstring(
        """
        S -> S S | 'a'
        """
    )
    topology = Topology.from_nltk(grammar)
    parser = CkyChartBuilder(
        "S", SimpleLexicon.from_nltk(grammar), topology, chart_factory=ParseChart.log_sum
    )
    # Catalan numbers: binary bracketings of n leaves
    for n, count in [(1, 1), (2, 1), (3, 2), (4, 5), (5, 14), (6, 42)]:
        assert math.exp(parser.log_partition(["a"] * n)) == pytest.approx(count)


def test_pcfg_probability():
    grammar = nltk.PCFG.fromstring(
        """
        S -> NP VP [1.0]
        NP -> Det N [0.6] | 'i' [0.4]
        VP -> V NP [1.0]
        V -> 'saw' [1.0]
        Det -> 'the' [1.0]
        N -> 'dog' [0.5] | 'cat' [0.5]
        """
    )
    parser = CkyChartBuilder(
        "S",
        SimpleLexicon.from_nltk(grammar),
        Topology.from_nltk(grammar),
        chart_factory=ParseChart.log_sum,
    )
    words = "i saw the dog".split()
    assert parser.log_partition(words) == pytest.approx(math.log(0.4 * 0.6 * 0.5))
    tree = parser.best_tree(words)
    assert flat(tree) == "(S (NP i) (VP (V saw) (NP (Det the) (N dog))))"
    assert tree.prob() == pytest.approx(0.12)


def test_max_span_length(pp_topology, pp_lexicon, sentence, caplog):
    parser = CkyChartBuilder("S", pp_lexicon, pp_topology, max_span_length=4)
    with caplog.at_level(logging.WARNING, logger="anchored_cky.parser"):
        inside = parser.build_inside_chart(sentence)
    assert "max span length" in caplog.text
    np_, vp = pp_topology.index_of("NP"), pp_topology.index_of("VP")
    assert inside.top.label_score(1, 4, vp) > -math.inf
    assert inside.bot.label_score(2, 7, np_) == -math.inf
    assert parser.best_tree(sentence) is None

    # the cap doesn't truncate short sentences
    assert parser.best_tree(["i", "saw", "the", "man"]) is not None
    with pytest.raises(ValueError):
        CkyChartBuilder("S", pp_lexicon, pp_topology, max_span_length=0)


def test_span_length_hook(pp_topology, pp_lexicon, sentence):
    calls = list[int]()
    parser = CkyChartBuilder("S", pp_lexicon, pp_topology, on_span_length=calls.append)
    parser.marginal(sentence)
    n = len(sentence)
    assert calls == list(range(1, n + 1)) + list(range(n, 0, -1))


def test_span_length_hook_cancels(pp_topology, pp_lexicon, sentence):
    class Cancelled(Exception):
        pass

    def deadline(span_length: int) -> None:
        if span_length > 3:
            raise Cancelled()

    parser = CkyChartBuilder("S", pp_lexicon, pp_topology, on_span_length=deadline)
    with pytest.raises(Cancelled):
        parser.build_inside_chart(sentence)
    assert parser.best_tree(sentence[:3]) is None  # "i saw the" has no parse


def test_with_charts(viterbi_parser, sentence):
    log_sum = viterbi_parser.with_charts(ParseChart.log_sum)
    assert log_sum.chart_factory == ParseChart.log_sum
    assert not log_sum.build_inside_chart(sentence).is_viterbi
    assert log_sum.log_partition(sentence) > viterbi_parser.log_partition(sentence)

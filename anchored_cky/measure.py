import nltk


def tree_to_spans(tree: nltk.Tree) -> list[tuple[str, int, int]]:
    """
    Labeled spans (label, begin, end) of every node of `tree`, children before
    parents, with `end` exclusive. Leaves are words and take one position each.

    `(A (B w0 w1) (C w2))` gives `[("B", 0, 2), ("C", 2, 3), ("A", 0, 3)]`.
    """

    results = list[tuple[str, int, int]]()

    def recur(root: nltk.Tree | str, begin: int) -> int:
        if not isinstance(root, nltk.Tree):  # Words take one position
            return begin + 1
        assert len(root) > 0
        end = begin
        for subtree in root:
            end = recur(subtree, end)
        results.append((root.label(), begin, end))
        return end

    recur(tree, 0)
    return results


def tree_f1_score(tree_gt: nltk.Tree, tree_pred: nltk.Tree, unlabeled: bool) -> float:
    """
    Span f1 score of a predicted tree against a gold tree.

    Spans are matched as sets, so a unary chain repeating the same span only
    counts once when `unlabeled`.
    """
    spans_gt = set(tree_to_spans(tree_gt))
    spans_pred = set(tree_to_spans(tree_pred))
    if unlabeled:  # Remove labels
        spans_gt = {x[1:] for x in spans_gt}
        spans_pred = {x[1:] for x in spans_pred}

    num_same = len(spans_gt & spans_pred)
    if num_same == 0:
        return 0.0
    precision = num_same / len(spans_pred)
    recall = num_same / len(spans_gt)
    return 2 * precision * recall / (precision + recall)

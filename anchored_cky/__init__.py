from .errors import (
    ChartParserError,
    CoarseParseFailure,
    CoverageError,
    GrammarConfigurationError,
)
from .topology import BinaryRule, Topology, UnaryRule
from .lexicon import Lexicon, LexiconAnchor, SimpleLexicon
from .constraints import ChartConstraints, LabeledSpanConstraints
from .anchoring import (
    CoreAnchoring,
    IdentityAnchoring,
    ProductAnchoring,
    QuotientAnchoring,
)
from .refined import LiftedCoreAnchoring, RefinedAnchoring
from .chart import (
    ChartFactory,
    ChartLayerBase,
    LogSumChartLayer,
    ParseChart,
    ViterbiChartLayer,
)
from .parser import DEFAULT_MAX_SPAN_LENGTH, ChartMarginal, CkyChartBuilder
from .coarse_to_fine import (
    DEFAULT_THRESHOLD,
    CoarsePosteriorAnchoring,
    CoarseToFineChartBuilder,
    coarse_span_scorer_from_parser,
    project_labels,
)
from .concurrent_wrap import ChartBuilderMultithreadingWrap
from .measure import tree_f1_score, tree_to_spans

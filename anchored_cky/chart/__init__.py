from .base import ChartLayerBase
from .viterbi import ViterbiChartLayer
from .log_sum import LogSumChartLayer
from .parse_chart import ChartFactory, ParseChart

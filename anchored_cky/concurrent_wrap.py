import nltk

from typing import Iterable, Sequence
import threading

from .coarse_to_fine import CoarseToFineChartBuilder
from .parser import ChartMarginal, CkyChartBuilder


class ChartBuilderMultithreadingWrap:
    """
    Multithreading support of chart builders.

    Sentences are independent, so a batch is cut into one contiguous slice per
    thread and every thread parses its slice with the shared, read-only builder.
    Each chart is owned by the thread that builds it.
    """

    def __init__(
        self,
        base_builder: CkyChartBuilder | CoarseToFineChartBuilder,
        num_threads: int,
    ) -> None:
        assert num_threads > 0
        self._base_builder = base_builder
        self._num_threads = num_threads
        self._lock = threading.Lock()

        self._signal_list_input_ready = list[threading.Semaphore]()
        self._signal_output_ready = threading.Barrier(self._num_threads + 1)
        self._shared = {
            "input": None,
            "output": None,
            "errors": None,
            "task": None,
            "builder": self._base_builder,
        }

        self._threads_list = list[threading.Thread]()
        for idx in range(self._num_threads):
            self._signal_list_input_ready.append(threading.Semaphore(0))
            thread = threading.Thread(
                target=self._proxy_thread,
                args=(
                    idx,
                    self._num_threads,
                    self._signal_list_input_ready[-1],
                    self._signal_output_ready,
                    self._shared,
                ),
                daemon=True,
            )
            thread.start()
            self._threads_list.append(thread)

    def __enter__(self) -> "ChartBuilderMultithreadingWrap":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def __del__(self) -> None:
        if hasattr(self, "_lock"):
            self.close()

    def close(self) -> None:
        """
        Stop the worker threads. The wrapper can't be used afterwards.
        """
        with self._lock:
            if len(self._shared) == 0:
                return
            self._shared.clear()
            self._signal_input_ready()
        for thread in self._threads_list:
            thread.join()

    def marginals(self, sentences: Iterable[Sequence[object]]) -> list[ChartMarginal]:
        return self._run("marginal", sentences)

    def log_partitions(self, sentences: Iterable[Sequence[object]]) -> list[float]:
        return self._run("log_partition", sentences)

    def best_trees(
        self, sentences: Iterable[Sequence[object]]
    ) -> list[nltk.ProbabilisticTree | None]:
        return self._run("best_tree", sentences)

    def _run(self, task: str, sentences: Iterable[Sequence[object]]) -> list:
        with self._lock:
            if len(self._shared) == 0:
                raise RuntimeError("the wrapper has been closed")
            sentences = [tuple(x) for x in sentences]
            self._shared["task"] = task
            self._shared["input"] = sentences
            self._shared["output"] = [None] * len(sentences)
            self._shared["errors"] = [None] * self._num_threads
            self._signal_input_ready()
            self._signal_output_ready.wait()

            errors = [x for x in self._shared["errors"] if x is not None]
            output = self._shared["output"]
            self._shared["input"] = self._shared["output"] = None
            if len(errors) > 0:
                raise errors[0]
            return output

    def _signal_input_ready(self):
        for signal in self._signal_list_input_ready:
            signal.release()

    @staticmethod
    def _proxy_thread(
        thread_index: int,
        num_threads: int,
        signal_input_ready: threading.Semaphore,
        signal_output_ready: threading.Barrier,
        shared: dict[str, object],
    ) -> None:
        while True:
            signal_input_ready.acquire()
            if len(shared) == 0:
                break

            len_input = len(shared["input"])
            per_thread_len = len_input // num_threads
            mod = len_input % num_threads
            beg = per_thread_len * thread_index + min(mod, thread_index)
            end = per_thread_len * (thread_index + 1) + min(mod, thread_index + 1)

            try:
                method = getattr(shared["builder"], shared["task"])
                out = [method(words) for words in shared["input"][beg:end]]
                shared["output"][beg:end] = out
            except Exception as err:
                shared["errors"][thread_index] = err
            signal_output_ready.wait()

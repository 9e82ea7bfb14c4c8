import weakref
from typing import Iterator, Optional, Protocol

from ..models import IndexingStep, ProcessedInfo


class IndexingPass(Protocol):
    total_count: int
    processed_count: int

    def prepare(self) -> None: ...

    def step(self) -> Optional[ProcessedInfo]: ...

    def finish(self) -> None: ...


class IndexingSequence(Iterator[IndexingStep]):
    """
    Pull-based progress over one indexing pass.

    The first step only reports the total (processed_count == 0, no
    processed_info). Every later step carries the outcome of one item.

    for step in gallery.index_new_files():
        if step.processed_info is None:
            progress.reset(total=step.total_count)
        else:
            progress.update(1)

    Stopping early is fine: whatever was reported stays committed. The pass
    is finished when the sequence runs out, is closed (explicitly or by
    `with`), or is dropped by the caller and garbage collected.
    A sequence runs once; build a new one to index again.
    """

    def __init__(self, indexing_pass: IndexingPass):
        self._pass = indexing_pass
        self._finalizer: Optional[weakref.finalize] = None
        self._closed = False

    @property
    def total_count(self) -> int:
        return self._pass.total_count

    @property
    def processed_count(self) -> int:
        return self._pass.processed_count

    def __iter__(self) -> "IndexingSequence":
        return self

    def __next__(self) -> IndexingStep:
        if self._closed:
            raise StopIteration

        if self._finalizer is None:
            self._pass.prepare()
            # Holds the pass, not the sequence, so an abandoned sequence can still be collected
            self._finalizer = weakref.finalize(self, self._pass.finish)
            return IndexingStep(total_count=self._pass.total_count, processed_count=0)

        info = self._pass.step()
        if info is None:
            self.close()
            raise StopIteration
        return IndexingStep(
            total_count=self._pass.total_count,
            processed_count=self._pass.processed_count,
            processed_info=info,
        )

    def close(self):
        """Flushes pending writes. Further pulls yield nothing."""
        self._closed = True
        if self._finalizer is not None:
            # A finalizer runs at most once
            self._finalizer()

    def __enter__(self) -> "IndexingSequence":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

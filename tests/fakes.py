"""In-process stand-ins for external services used across the test suite."""

from __future__ import annotations

from collections.abc import Sequence

from code_index.schemas.embeddings import TaskIntent

FAKE_DIMENSION = 4


class FakeEmbeddingClient:
    """Embedding client returning a fixed unit vector for every text.

    Records every request so tests can assert on batching. Set `failures` to
    make the next N calls raise before succeeding again.
    """

    def __init__(self, *, dimension: int = FAKE_DIMENSION, failures: int = 0) -> None:
        self.dimension = dimension
        self.failures = failures
        self.calls: list[tuple[list[str], TaskIntent]] = []
        self.closed = False

    @property
    def texts_embedded(self) -> list[str]:
        return [text for texts, _intent in self.calls for text in texts]

    async def embed(self, texts: Sequence[str], *, intent: TaskIntent) -> Sequence[Sequence[float]]:
        self.calls.append((list(texts), intent))
        if self.failures > 0:
            self.failures -= 1
            raise ConnectionError('embedding service unavailable')
        return [self._vector() for _ in texts]

    async def close(self) -> None:
        self.closed = True

    def _vector(self) -> list[float]:
        return [1.0] + [0.0] * (self.dimension - 1)


class ShortResponseClient(FakeEmbeddingClient):
    """Returns one vector fewer than requested."""

    async def embed(self, texts: Sequence[str], *, intent: TaskIntent) -> Sequence[Sequence[float]]:
        vectors = await super().embed(texts, intent=intent)
        return vectors[:-1]


class FakeObserver:
    """watchdog observer stand-in that never starts a thread."""

    def __init__(self) -> None:
        self.scheduled: list[tuple[object, str, bool]] = []
        self.started = False
        self.stopped = False

    def schedule(self, handler: object, path: str, recursive: bool = False) -> None:
        self.scheduled.append((handler, path, recursive))

    def start(self) -> None:
        self.started = True

    def stop(self) -> None:
        self.stopped = True

    def join(self, timeout: float | None = None) -> None:
        pass

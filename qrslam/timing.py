import time


class StopWatch:
    def __init__(self, start_now: bool = True):
        self._t0 = time.perf_counter() if start_now else 0.0

    def reset(self) -> None:
        self._t0 = time.perf_counter()

    def elapsed(self) -> float:
        return time.perf_counter() - self._t0

    def lap(self) -> float:
        e = self.elapsed()
        self.reset()
        return e


class FpsMeter:
    """Exponentially smoothed frame rate; call tick() once per frame."""

    def __init__(self, alpha: float = 0.9, clock=time.perf_counter):
        self.alpha = alpha
        self._clock = clock
        self._prev = None
        self._fps = 0.0

    def tick(self) -> float:
        now = self._clock()
        if self._prev is None:
            self._prev = now
            return 0.0
        dt = now - self._prev
        self._prev = now
        if dt <= 0.0:
            return self._fps
        inst = 1.0 / dt
        if self._fps < 1e-3:
            self._fps = inst
        else:
            self._fps = self.alpha * self._fps + (1.0 - self.alpha) * inst
        return self._fps

    @property
    def fps(self) -> float:
        return self._fps

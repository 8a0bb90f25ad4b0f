"""Wall-clock timing for the slow steps of an aggregation run."""
import time


class Timer:
    """Measure how long a block of work takes.

    Use as a context manager; after the block exits, `elapsed_time` holds the
    seconds spent inside it.  Before that it is 0.0.
    """

    elapsed_time: float = 0.0

    def __enter__(self) -> "Timer":
        """Start the clock and hand back the timer itself."""
        self.start_time = time.perf_counter()
        return self

    def __exit__(self, *exc_info) -> None:
        # Also runs when the block raises.
        self.elapsed_time = time.perf_counter() - self.start_time

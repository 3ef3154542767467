"""Progress reporting and cancellation for operator invocations."""

import threading

from dagster import get_dagster_logger

logger = get_dagster_logger()


class ProgressListener:
    """Receives progress of one invocation and carries its cancellation flag.

    ``cancel`` may be called from another thread; the operator checks
    ``is_canceled`` before each raster layer and each political feature.
    """

    def __init__(self) -> None:
        self._canceled = threading.Event()
        self.percent = 0.0
        self.is_started = False
        self.is_completed = False

    @property
    def is_canceled(self) -> bool:
        return self._canceled.is_set()

    def cancel(self) -> None:
        self._canceled.set()

    def started(self) -> None:
        self.is_started = True
        self.percent = 0.0

    def progress(self, percent: float) -> None:
        self.percent = float(percent)

    def complete(self) -> None:
        self.is_completed = True
        self.percent = 100.0


class LoggingProgressListener(ProgressListener):
    """ProgressListener that also logs each update."""

    def __init__(self, task: str = "hazard statistics") -> None:
        super().__init__()
        self.task = task

    def started(self) -> None:
        super().started()
        logger.info(f"Started {self.task}")

    def progress(self, percent: float) -> None:
        super().progress(percent)
        logger.debug(f"{self.task}: {self.percent:.0f}%")

    def complete(self) -> None:
        super().complete()
        logger.info(f"Completed {self.task}")

from dataclasses import dataclass
from typing import Callable, List
from structlog import get_logger

logger = get_logger()

@dataclass(frozen=True)
class UploadProgress:
    key: str
    bytes_transferred: int
    total_bytes: int

    @property
    def fraction(self) -> float:
        if self.total_bytes <= 0:
            return 1.0
        return self.bytes_transferred / self.total_bytes

    @property
    def percent(self) -> float:
        return self.fraction * 100

ProgressCallback = Callable[[UploadProgress], None]

class ProgressStream:
    """Fan-out of upload progress events.

    Telemetry only: a failing subscriber is logged and never reaches the uploader.
    """

    def __init__(self):
        self._subscribers: List[ProgressCallback] = []

    def subscribe(self, callback: ProgressCallback) -> Callable[[], None]:
        self._subscribers.append(callback)

        def unsubscribe():
            if callback in self._subscribers:
                self._subscribers.remove(callback)
        return unsubscribe

    def publish(self, event: UploadProgress) -> None:
        for callback in list(self._subscribers):
            try:
                callback(event)
            except Exception as e:
                logger.warning("Progress subscriber failed", key=event.key, error=str(e))

def log_progress(event: UploadProgress) -> None:
    logger.info(
        "Upload progress",
        key=event.key,
        percent=round(event.percent, 1),
        bytes_transferred=event.bytes_transferred,
        total_bytes=event.total_bytes,
    )

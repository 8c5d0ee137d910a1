import logging
import os
import time
from pathlib import Path
from typing import Callable, Iterable, Optional, Set

from clip_library import list_clips
from constants import (
    DEFAULT_RESOLVE_ATTEMPTS,
    DEFAULT_RESOLVE_BACKOFF,
    DEFAULT_SETTLE_DELAY,
    VIDEO_EXTENSIONS,
)
from errors import ResolutionTimeout

logger = logging.getLogger(__name__)


class ClipResolver:
    """
    Finds the file produced by the most recent save request.

    The recorder does not return a file name, so after a settle delay the clip
    directory is listed and the newest video modified at or after the request
    is taken. The caller must not issue a second save before this returns
    and must exclude clips it already owns; together those make "newest
    file" an unambiguous answer.
    """

    def __init__(
        self,
        clip_dir: Path,
        *,
        settle_delay: float = DEFAULT_SETTLE_DELAY,
        backoff: float = DEFAULT_RESOLVE_BACKOFF,
        max_attempts: int = DEFAULT_RESOLVE_ATTEMPTS,
        extensions: Iterable[str] = VIDEO_EXTENSIONS,
        clock_skew: float = 1.0,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.clip_dir = Path(clip_dir)
        self.settle_delay = max(settle_delay, 0.0)
        self.backoff = max(backoff, 0.0)
        self.max_attempts = max(int(max_attempts), 1)
        self.extensions = tuple(extensions)
        self.clock_skew = clock_skew
        self._sleep = sleep
        self._clock = clock

    @property
    def budget(self) -> float:
        return self.settle_delay + self.backoff * (self.max_attempts - 1)

    def resolve(
        self,
        requested_at: Optional[float] = None,
        timeout: Optional[float] = None,
        *,
        exclude: Iterable[Path] = (),
        strict: bool = False,
    ) -> Optional[Path]:
        """
        Return the clip for the save issued at ``requested_at``.

        Paths in ``exclude`` (clips already handed out) are never returned.
        When the budget is spent the result is None, or ``ResolutionTimeout``
        is raised if ``strict`` is set.
        """
        requested_at = requested_at if requested_at is not None else self._clock()
        deadline = self._clock() + (timeout if timeout is not None else self.budget)
        excluded = {_key(path) for path in exclude}
        self._sleep(self.settle_delay)

        for attempt in range(1, self.max_attempts + 1):
            clip = self._newest_since(requested_at - self.clock_skew, excluded)
            if clip is not None:
                logger.info("Resolved clip %s on attempt %s", clip.name, attempt)
                return clip
            if attempt == self.max_attempts:
                break
            remaining = deadline - self._clock()
            if remaining <= 0:
                break
            self._sleep(min(self.backoff, remaining))

        if strict:
            raise ResolutionTimeout(f"No clip appeared in {self.clip_dir} after {self.max_attempts} attempts")
        logger.warning(
            "No clip appeared in %s after %s attempts; keeping evidence without a clip.",
            self.clip_dir,
            self.max_attempts,
        )
        return None

    def _newest_since(self, threshold: float, excluded: Set[str]) -> Optional[Path]:
        for clip in list_clips(self.clip_dir, extensions=self.extensions):
            if _key(clip) in excluded:
                continue
            try:
                if clip.stat().st_mtime >= threshold:
                    return clip
            except OSError:
                continue
            # list_clips is newest first, so nothing further down qualifies.
            break
        return None


def _key(path) -> str:
    return os.path.normcase(os.path.abspath(os.fspath(path)))

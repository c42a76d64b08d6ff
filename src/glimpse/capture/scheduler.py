"""Periodic producers that feed observations into memory."""

from __future__ import annotations

import asyncio

import structlog

from glimpse.capture.sources import FrameSource, TextExtractor
from glimpse.exceptions import InvalidMediaError
from glimpse.memory.store import MemoryStore
from glimpse.utils import parse_data_url

logger = structlog.get_logger(__name__)


class PeriodicTask:
    """Runs ``tick`` every ``interval`` seconds on the running event loop.

    A failing tick is logged and skipped; it never stops the schedule.
    """

    name = "periodic"

    def __init__(self, interval: float) -> None:
        self.interval = float(interval)
        self._task: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def tick(self) -> object:
        raise NotImplementedError

    def start(self) -> bool:
        if self.running:
            logger.info("schedule_already_running", schedule=self.name)
            return False
        self._task = asyncio.get_running_loop().create_task(self._run(), name=f"glimpse-{self.name}")
        logger.info("schedule_started", schedule=self.name, interval=self.interval)
        return True

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info("schedule_stopped", schedule=self.name)

    async def _run(self) -> None:
        while True:
            try:
                await self.tick()
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                logger.warning("tick_failed", schedule=self.name, error=str(exc))
            await asyncio.sleep(self.interval)


class CaptureScheduler(PeriodicTask):
    """Screen frame → OCR text → ``MemoryStore.add_observation``."""

    name = "capture"

    def __init__(
        self,
        store: MemoryStore,
        frames: FrameSource,
        extractor: TextExtractor,
        interval: float = 5.0,
    ) -> None:
        super().__init__(interval)
        self.store = store
        self.frames = frames
        self.extractor = extractor

    async def snapshot(self) -> tuple[str, str]:
        """Grab one frame and its OCR text. Returns ("", "") when nothing usable was captured."""
        try:
            frame = await self.frames.capture_frame()
        except Exception as exc:
            logger.warning("frame_capture_failed", error=str(exc))
            return "", ""
        if not frame:
            logger.debug("no_capturable_source")
            return "", ""
        try:
            parse_data_url(frame, allowed_prefixes=("image/",))
        except InvalidMediaError as exc:
            logger.warning("frame_rejected", reason=str(exc))
            return "", ""
        try:
            text = await self.extractor.extract_text(frame)
        except Exception as exc:
            logger.warning("text_extraction_failed", error=str(exc))
            return frame, ""
        return frame, (text or "").strip()

    async def tick(self) -> str | None:
        _, text = await self.snapshot()
        if not text:
            return None
        await self.store.add_observation(text)
        logger.debug("screen_observed", chars=len(text), entries=len(self.store))
        return text

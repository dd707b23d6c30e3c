"""
Single-permit gate for local rendering.

Local renders (motion graphics) are CPU bound, so only one runs at a time;
later requests wait in arrival order. Provider calls are network bound and
do not go through the gate.
"""
import asyncio
import logging
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, Optional

from clipgen.utils.metrics import render_gate_waiting

logger = logging.getLogger(__name__)


class MotionRenderer(ABC):
    """Renders a motion-graphics template to a local video file."""

    @abstractmethod
    async def render(self, template_id: str, props: Dict[str, Any], output_path: str) -> None:
        """
        Render template_id with props into output_path.

        Raises:
            Exception: Any render failure; the job is failed and refunded
        """
        pass

    def has_template(self, template_id: str) -> bool:
        """Whether the renderer knows template_id. Defaults to accepting all."""
        return True


class RenderGate:
    """Gate with exactly one permit; asyncio.Lock hands it over in arrival order."""

    def __init__(self):
        self._lock = asyncio.Lock()
        self._waiting = 0

    @property
    def busy(self) -> bool:
        return self._lock.locked()

    @property
    def waiting(self) -> int:
        return self._waiting

    async def acquire(self) -> None:
        self._waiting += 1
        render_gate_waiting.set(self._waiting)
        try:
            await self._lock.acquire()
        finally:
            self._waiting -= 1
            render_gate_waiting.set(self._waiting)

    def release(self) -> None:
        self._lock.release()

    @asynccontextmanager
    async def slot(self, label: Optional[str] = None) -> AsyncIterator[None]:
        """Hold the permit for the duration of the block, releasing on any exit."""
        if self.busy:
            logger.info(f"Render queued behind active render: {label} ({self.waiting + 1} waiting)")
        await self.acquire()
        try:
            yield
        finally:
            self.release()

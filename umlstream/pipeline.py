"""Recomputation pipeline: load -> extract -> render -> publish.

The pipeline is the only writer of the current diagram.  Triggers (file
changes, new clients, manual requests) go through one ``asyncio.Queue`` and
are consumed by a single task, so passes never overlap and diagrams are
published in the order the passes finished.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Optional, Tuple

from .broadcaster import Connection, SessionBroadcaster
from .models import ParseFailure
from .parser import SourceModelExtractor
from .project import ProjectLoadError, load_project
from .renderer import render_plantuml

logger = logging.getLogger(__name__)


class DiagramSnapshot:
    """Holds the current diagram text; replaced whole, never edited."""

    def __init__(self) -> None:
        self._text: Optional[str] = None
        self._version = 0

    def get(self) -> Optional[str]:
        return self._text

    @property
    def version(self) -> int:
        return self._version

    def replace(self, text: str) -> None:
        self._text = text
        self._version += 1


@dataclass(frozen=True)
class PassOutcome:
    diagram: Optional[str] = None
    failures: Tuple[ParseFailure, ...] = ()
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


def failure_message(failures: Tuple[ParseFailure, ...]) -> str:
    details = ", ".join(f"{f.path} ({f.reason})" for f in failures)
    return f"Failed to parse {len(failures)} file(s): {details}"


class RecomputationPipeline:
    """Owns the diagram snapshot and every pass that replaces it."""

    def __init__(
        self,
        root: Path,
        descriptor: Path | str,
        broadcaster: SessionBroadcaster,
        coalesce: bool = True,
    ) -> None:
        self.root = Path(root).resolve()
        self.descriptor = descriptor
        self.broadcaster = broadcaster
        self.coalesce = coalesce
        self.snapshot = DiagramSnapshot()
        self.last_failures: Tuple[ParseFailure, ...] = ()
        self.passes = 0
        self._extractors: Dict[str, SourceModelExtractor] = {}
        self._queue: asyncio.Queue[str] = asyncio.Queue()

        # Nobody is attached yet, so the first pass only fills the snapshot.
        outcome = self._run_pass()
        if outcome.diagram is not None:
            self._publish_local(outcome.diagram, outcome.failures)
        else:
            logger.error("Initial UML generation failed: %s", outcome.error)

    # ------------------------------------------------------------------
    # Passes
    # ------------------------------------------------------------------

    def _extractor(self, language: str) -> SourceModelExtractor:
        if language not in self._extractors:
            self._extractors[language] = SourceModelExtractor(language)
        return self._extractors[language]

    def _run_pass(self) -> PassOutcome:
        self.passes += 1
        try:
            project = load_project(self.root, self.descriptor)
            result = self._extractor(project.language).extract(project.files, root=project.root)
            diagram = render_plantuml(result.model)
        except ProjectLoadError as exc:
            return PassOutcome(error=str(exc))
        except Exception as exc:
            logger.exception("Unexpected error during UML generation")
            return PassOutcome(error=f"{type(exc).__name__}: {exc}")
        return PassOutcome(diagram=diagram, failures=result.failures)

    def _publish_local(self, diagram: str, failures: Tuple[ParseFailure, ...]) -> None:
        self.snapshot.replace(diagram)
        self.last_failures = failures

    async def recompute(self, reason: str = "manual") -> bool:
        """Run one pass and push the result; never raises.

        On failure the previous diagram stays in place and every client gets
        an ``error`` message instead of an update.
        """
        logger.debug("Recomputing UML (%s)", reason)
        outcome = self._run_pass()
        diagram = outcome.diagram
        if diagram is None:
            logger.error("Error updating UML: %s", outcome.error)
            await self.broadcaster.broadcast_error(f"Failed to update UML diagram: {outcome.error}")
            return False

        self._publish_local(diagram, outcome.failures)
        await self.broadcaster.broadcast_diagram(diagram)
        if outcome.failures:
            await self.broadcaster.broadcast_error(failure_message(outcome.failures))
        return True

    # ------------------------------------------------------------------
    # Triggers
    # ------------------------------------------------------------------

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    def trigger(self, reason: str = "change") -> None:
        self._queue.put_nowait(reason)

    def on_file_changed(self, path: Path) -> None:
        self.trigger(f"changed {path}")

    async def attach(self, conn: Connection) -> None:
        """Register a new client, send it the current diagram, then refresh."""
        await self.broadcaster.connect(conn, self.snapshot.get())
        self.trigger(f"attach {conn.id}")

    async def run(self) -> None:
        """Consume triggers forever, one pass at a time."""
        while True:
            reason = await self._queue.get()
            if self.coalesce:
                merged = 0
                while not self._queue.empty():
                    self._queue.get_nowait()
                    merged += 1
                if merged:
                    logger.debug("Coalesced %d queued trigger(s)", merged)
            await self.recompute(reason)

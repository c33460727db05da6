"""
Background Workers (Threading)
==============================
This module runs simulations on background threads and hands out handles.

Why is this file needed?
------------------------
1. Responsiveness: A run can take minutes. submit() validates the
   configuration, starts a daemon thread and returns a run id right away.
2. Polling: Callers poll progress and fetch results by id, from any thread.
3. Isolation: Every run owns its engine, buffers and cancellation flag;
   runs share nothing mutable except the (immutable) material library.

Classes:
    RunManager: Submits, tracks and cancels runs.
"""
from __future__ import annotations

import logging
import threading
import uuid
from dataclasses import dataclass
from typing import Any, Optional, Union

from plasmafurnace.config import EngineLimits
from plasmafurnace.controller.engine import SimulationEngine
from plasmafurnace.errors import UnknownRun
from plasmafurnace.model.materials import MaterialLibrary
from plasmafurnace.model.state import Progress, RunStatus, SimulationConfig, SimulationResult

logger = logging.getLogger(__name__)


@dataclass
class _RunHandle:
    engine: SimulationEngine
    thread: threading.Thread


class RunManager:
    """
    Registry of simulation runs keyed by an opaque id.

    Example:
        manager = RunManager()
        run_id = manager.submit(config)
        while not manager.poll_progress(run_id).status.is_terminal:
            time.sleep(0.1)
        result = manager.fetch_results(run_id)
    """

    def __init__(self, library: Optional[MaterialLibrary] = None, limits: Optional[EngineLimits] = None) -> None:
        self.library = library or MaterialLibrary()
        self.limits = limits or EngineLimits()
        self._runs: dict[str, _RunHandle] = {}
        self._lock = threading.Lock()

    def submit(self, config: Union[SimulationConfig, dict[str, Any]]) -> str:
        """
        Validate the configuration and start the run in the background.

        Returns:
            The run id.

        Raises:
            ConfigurationError: Invalid configuration; no run is created.
            ResourceExhaustion: Mesh or memory above the configured limits.
        """
        engine = SimulationEngine(config, library=self.library, limits=self.limits)
        run_id = str(uuid.uuid4())
        thread = threading.Thread(target=self._run_worker, args=(run_id, engine), name=f"run-{run_id[:8]}")
        thread.daemon = True
        with self._lock:
            self._runs[run_id] = _RunHandle(engine=engine, thread=thread)
        thread.start()
        logger.info(f"Run {run_id} submitted.")
        return run_id

    @staticmethod
    def _run_worker(run_id: str, engine: SimulationEngine) -> None:
        try:
            logger.info(f"Run {run_id} started in background thread.")
            result = engine.run()
            logger.info(f"Run {run_id} finished with status '{result.status}'.")
        except Exception as e:
            # The engine has already recorded a failed result
            logger.error(f"Error in run {run_id}: {e}")

    def _handle(self, run_id: str) -> _RunHandle:
        with self._lock:
            handle = self._runs.get(run_id)
        if handle is None:
            raise UnknownRun(run_id)
        return handle

    def poll_progress(self, run_id: str) -> Progress:
        """Last published progress of a run."""
        return self._handle(run_id).engine.progress

    def status(self, run_id: str) -> RunStatus:
        return self._handle(run_id).engine.status

    def cancel(self, run_id: str) -> None:
        """Request cancellation; a no-op for runs that already finished."""
        self._handle(run_id).engine.cancel()
        logger.info(f"Cancellation of run {run_id} requested.")

    def fetch_results(self, run_id: str) -> Optional[SimulationResult]:
        """The result once the run reached a terminal state, otherwise None."""
        return self._handle(run_id).engine.result

    def wait(self, run_id: str, timeout: Optional[float] = None) -> Optional[SimulationResult]:
        """Block until the run terminates (or the timeout expires)."""
        handle = self._handle(run_id)
        handle.thread.join(timeout)
        return handle.engine.result

    def run_ids(self) -> list[str]:
        with self._lock:
            return list(self._runs)

    def discard(self, run_id: str) -> None:
        """Forget a finished run and release its snapshots."""
        handle = self._handle(run_id)
        if not handle.engine.status.is_terminal:
            raise RuntimeError(f"Run {run_id} is still active; cancel it first.")
        with self._lock:
            self._runs.pop(run_id, None)

    def shutdown(self, timeout: Optional[float] = None) -> None:
        """Cancel every active run and wait for the threads to stop."""
        with self._lock:
            handles = list(self._runs.values())
        for handle in handles:
            handle.engine.cancel()
        for handle in handles:
            handle.thread.join(timeout)
        logger.info("Run manager shut down.")

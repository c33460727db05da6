"""
Simulation Engine
=================
Orchestrates a single simulation run.

Why is this file needed?
------------------------
1. Validation: The whole configuration is checked before the first step, so
   configuration problems never surface half way through a run.
2. Time-Stepping: It drives the solver from t=0 to total_time, aligning steps
   with the output cadence and taking snapshots.
3. Control: Progress is published at a bounded rate and a cooperative
   cancellation flag is honoured at every step boundary.

State machine: IDLE -> RUNNING -> COMPLETED | CANCELLED | FAILED (terminal).

Note: This module is pure Python/NumPy; threads are managed by the caller
(see controller/workers.py).
"""
from __future__ import annotations

import dataclasses
import logging
import math
import threading
import time
from typing import Any, Callable, Optional, Union

import numpy as np

from plasmafurnace.config import (
    CFL_FACTOR_RANGE,
    POSITION_TOLERANCE,
    TORCH_EFFICIENCY_RANGE,
    TORCH_POWER_RANGE_KW,
    TORCH_SIGMA_RANGE_M,
    EngineLimits,
)
from plasmafurnace.controller.fea.analysis.metrics import EnergyMonitor
from plasmafurnace.controller.fea.pre.formula import FormulaContext
from plasmafurnace.controller.fea.pre.heat_sources import HeatSourceModel
from plasmafurnace.controller.fea.pre.material import Material
from plasmafurnace.controller.fea.pre.mesh import Mesh
from plasmafurnace.controller.fea.solvers.solver import Solver
from plasmafurnace.errors import (
    ConfigurationError,
    FormulaEvaluationError,
    NumericalInstability,
    ResourceExhaustion,
    SimulationError,
)
from plasmafurnace.model.materials import MaterialLibrary
from plasmafurnace.model.state import (
    FailureInfo,
    Progress,
    ResultMetadata,
    RunStatus,
    SimulationConfig,
    SimulationResult,
    Snapshot,
)

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[Progress], None]

# Buffers besides the two field buffers: k, rho_cp, alpha, heating
_WORK_ARRAYS = 4


def _check_range(
    value: float,
    bounds: tuple[float, float],
    parameter: str,
    low_inclusive: bool = False,
    high_inclusive: bool = True,
) -> None:
    low, high = bounds
    above_low = value >= low if low_inclusive else value > low
    below_high = value <= high if high_inclusive else value < high
    if not (above_low and below_high):
        left = "[" if low_inclusive else "("
        right = "]" if high_inclusive else ")"
        raise ConfigurationError(
            f"Parameter '{parameter}' = {value} outside the allowed range {left}{low}, {high}{right}.",
            parameter=parameter,
        )


def _check_positive(value: Optional[float], parameter: str) -> None:
    if value is None or not math.isfinite(value) or value <= 0:
        raise ConfigurationError(f"Parameter '{parameter}' must be positive, got {value}.", parameter=parameter)


class SimulationEngine:
    """
    Runs one simulation described by a SimulationConfig.

    The configuration is validated in the constructor; ConfigurationError or
    ResourceExhaustion is raised before anything is computed. Each engine
    owns its mesh, solver buffers and cancellation flag, so several engines
    can run concurrently in different threads.

    Args:
        config: The run configuration (a SimulationConfig or its dict form).
        library: Material library to resolve the material name in. A fresh
            library with the built-in materials is used when omitted.
        limits: Resource ceilings and progress cadence.
        progress_callback: Called with a Progress object at the bounded
            cadence and on every state change, from the running thread.
    """

    def __init__(
        self,
        config: Union[SimulationConfig, dict[str, Any]],
        library: Optional[MaterialLibrary] = None,
        limits: Optional[EngineLimits] = None,
        progress_callback: Optional[ProgressCallback] = None,
    ) -> None:
        if isinstance(config, dict):
            config = SimulationConfig.from_dict(config)
        self.config = config
        self.limits = limits or EngineLimits()
        self.library = library or MaterialLibrary()
        self.progress_callback = progress_callback

        self._lock = threading.Lock()
        self._cancel_event = threading.Event()
        self._status = RunStatus.IDLE
        self._progress = Progress()
        self._result: Optional[SimulationResult] = None
        self._last_publish = -math.inf
        self._warnings: list[str] = []

        self.mesh: Mesh
        self.material: Material
        self.heat_sources: HeatSourceModel
        self.solver: Optional[Solver] = None
        self.validate()

    # --- Validation ---

    def validate(self) -> None:
        """
        Check the configuration and build mesh, material and heat sources.

        Raises:
            ConfigurationError: On invalid parameters (UnknownMaterial and
                InvalidFormula are subclasses).
            ResourceExhaustion: If the mesh exceeds the configured ceilings.
        """
        cfg = self.config
        settings = cfg.simulation
        boundary = cfg.boundary

        _check_positive(cfg.geometry.radius, "geometry.radius")
        _check_positive(cfg.geometry.height, "geometry.height")
        _check_positive(settings.total_time, "simulation.total_time")
        _check_positive(settings.output_interval, "simulation.output_interval")
        _check_positive(settings.reference_temperature, "simulation.reference_temperature")
        _check_range(settings.cfl_factor, CFL_FACTOR_RANGE, "simulation.cfl_factor")
        if settings.max_time_step is not None:
            _check_positive(settings.max_time_step, "simulation.max_time_step")
        _check_positive(boundary.initial_temperature, "boundary.initial_temperature")
        _check_positive(boundary.ambient_temperature, "boundary.ambient_temperature")

        nr, nz = cfg.mesh.resolution()
        self._check_resources(nr, nz)
        self.mesh = Mesh.build(cfg.geometry.radius, cfg.geometry.height, nr, nz)

        if not cfg.torches:
            raise ConfigurationError("At least one torch is required.", parameter="torches")
        for index, torch in enumerate(cfg.torches):
            path = f"torches[{index}]"
            if not self.mesh.contains(torch.r, torch.z, tolerance=POSITION_TOLERANCE):
                raise ConfigurationError(
                    f"Torch {index} at (r={torch.r}, z={torch.z}) m lies outside the furnace "
                    f"(radius {self.mesh.radius} m, height {self.mesh.height} m).",
                    parameter=f"{path}.position",
                )
            _check_range(torch.power, TORCH_POWER_RANGE_KW, f"{path}.power")
            _check_range(torch.efficiency, TORCH_EFFICIENCY_RANGE, f"{path}.efficiency", low_inclusive=True)
            _check_range(torch.sigma, TORCH_SIGMA_RANGE_M, f"{path}.sigma")

        context = FormulaContext({**self.library.context.custom_constants, **cfg.formula_constants})

        material = self.library.get(cfg.material.name)
        if boundary.emissivity is not None:
            material = dataclasses.replace(material, emissivity=boundary.emissivity)
        try:
            material.diffusivity(settings.reference_temperature)
            material.diffusivity(boundary.initial_temperature)
        except FormulaEvaluationError as e:
            raise ConfigurationError(
                f"Material '{material.name}' cannot be evaluated: {e}", parameter="material"
            ) from e
        self.material = material

        self.heat_sources = HeatSourceModel(
            torches=[t.to_torch() for t in cfg.torches],
            boundary=boundary.to_boundary_conditions(),
            source_formula=cfg.heat_source_formula,
            formula_context=context,
        )

    def _check_resources(self, nr: int, nz: int) -> None:
        nodes = nr * nz
        if nodes > self.limits.max_nodes:
            raise ResourceExhaustion("mesh nodes", nodes, self.limits.max_nodes)
        settings = self.config.simulation
        n_snapshots = math.ceil(settings.total_time / settings.output_interval) + 1
        estimated = nodes * 8 * (2 + _WORK_ARRAYS + n_snapshots)
        if estimated > self.limits.max_memory_bytes:
            raise ResourceExhaustion("memory in bytes", estimated, self.limits.max_memory_bytes)

    # --- State ---

    @property
    def status(self) -> RunStatus:
        with self._lock:
            return self._status

    @property
    def progress(self) -> Progress:
        with self._lock:
            return self._progress

    @property
    def result(self) -> Optional[SimulationResult]:
        with self._lock:
            return self._result

    @property
    def is_cancelled(self) -> bool:
        return self._cancel_event.is_set()

    def cancel(self) -> None:
        """Request a cooperative stop at the next step boundary. Idempotent."""
        with self._lock:
            if self._status.is_terminal:
                return
            if not self._cancel_event.is_set():
                logger.info("Cancellation requested.")
            self._cancel_event.set()

    # --- Running ---

    def run(self) -> SimulationResult:
        """
        Execute the run to a terminal state.

        Returns:
            The SimulationResult; its status is COMPLETED, CANCELLED or FAILED.
            Failed runs carry `failure` and the snapshots taken so far.

        Raises:
            RuntimeError: If the engine has already been run.
        """
        with self._lock:
            if self._status != RunStatus.IDLE:
                raise RuntimeError(f"Engine already used (status: {self._status}).")
            self._status = RunStatus.RUNNING

        cfg = self.config
        logger.info(
            f"Starting simulation: material '{self.material.name}', mesh {self.mesh.nr}x{self.mesh.nz}, "
            f"{len(cfg.torches)} torch(es), {cfg.simulation.total_time} s"
        )
        start_wall = time.perf_counter()
        snapshots: list[Snapshot] = []
        monitor = EnergyMonitor(reference_temperature=cfg.boundary.ambient_temperature)
        failure: Optional[FailureInfo] = None
        status = RunStatus.FAILED

        try:
            self.solver = Solver(
                mesh=self.mesh,
                material=self.material,
                heat_sources=self.heat_sources,
                initial_temperature=cfg.boundary.initial_temperature,
                cfl_factor=cfg.simulation.cfl_factor,
                reference_temperature=cfg.simulation.reference_temperature,
                use_field_maximum=True,
                parallel=cfg.simulation.parallel,
            )
            logger.info(f"Stable time step: {self.solver.compute_stable_dt():.6g} s")
            self._publish(start_wall, force=True)
            status = self._run_loop(snapshots, monitor, start_wall)
        except NumericalInstability as e:
            logger.error(f"Simulation failed: {e}")
            failure = FailureInfo(reason=e.reason, error_type=type(e).__name__, step=e.step, time=e.time)
        except SimulationError as e:
            logger.error(f"Simulation failed: {e}")
            failure = self._failure_from(e)
        except Exception as e:
            logger.exception(f"Unexpected error during simulation: {e}")
            self._finish(RunStatus.FAILED, snapshots, monitor, self._failure_from(e), start_wall)
            raise

        return self._finish(status, snapshots, monitor, failure, start_wall)

    def _failure_from(self, error: Exception) -> FailureInfo:
        step = self.solver.step_count if self.solver else 0
        sim_time = self.solver.time if self.solver else 0.0
        return FailureInfo(reason=str(error), error_type=type(error).__name__, step=step, time=sim_time)

    def _run_loop(self, snapshots: list[Snapshot], monitor: EnergyMonitor, start_wall: float) -> RunStatus:
        solver = self.solver
        assert solver is not None
        settings = self.config.simulation
        total = settings.total_time
        interval = settings.output_interval
        eps = 1e-9 * max(1.0, total)

        snapshots.append(Snapshot.from_field(0.0, solver.temperature))
        monitor.start(self._stored_energy())
        self._check_material_limits(solver.temperature)

        output_index = 1
        next_output = min(interval, total)

        while total - solver.time > eps:
            if self._cancel_event.is_set():
                logger.info(f"Simulation cancelled at time {solver.time:.3f}s (step {solver.step_count})")
                return RunStatus.CANCELLED

            dt = min(solver.compute_stable_dt(), total - solver.time, next_output - solver.time)
            if settings.max_time_step is not None:
                dt = min(dt, settings.max_time_step)

            source = solver.source_field()
            solver.step(dt)
            self._account_energy(monitor, source, dt)

            if solver.time >= next_output - eps:
                field = solver.temperature
                snapshots.append(Snapshot.from_field(solver.time, field))
                monitor.update(self._stored_energy(), 0.0, 0.0)
                monitor.check(solver.time)
                self._check_material_limits(field)
                logger.debug(f"Snapshot {len(snapshots) - 1} at t={solver.time:.4f}s")
                output_index += 1
                next_output = min(output_index * interval, total)

            if total - solver.time > eps:
                self._publish(start_wall)

        with self._lock:
            cancelled = self._cancel_event.is_set()
        if cancelled:
            logger.info("Simulation cancelled after the final step.")
            return RunStatus.CANCELLED

        logger.info(f"Simulation loop completed: {solver.step_count} steps, {solver.time:.3f}s")
        return RunStatus.COMPLETED

    def _stored_energy(self) -> float:
        assert self.solver is not None
        return EnergyMonitor.stored_energy(
            self.mesh, self.material, self.solver.temperature, self.config.boundary.ambient_temperature
        )

    def _account_energy(self, monitor: EnergyMonitor, source: np.ndarray, dt: float) -> None:
        """Accumulate source input and wall conduction loss of the last step."""
        assert self.solver is not None
        field = self.solver.temperature
        energy_input = float(np.sum(source * self.mesh.cell_volumes)) * dt
        k_wall = np.asarray(self.material.thermal_conductivity(field[-1, :]), dtype=np.float64)
        wall_flux = k_wall * (field[-2, :] - field[-1, :]) / self.mesh.dr
        energy_loss = float(np.sum(wall_flux * self.mesh.outer_wall_areas())) * dt
        monitor.energy_input += energy_input
        monitor.energy_loss += energy_loss

    def _check_material_limits(self, field: np.ndarray) -> None:
        if self._warnings or self.material.is_within_limits(field):
            return
        message = (
            f"Temperature field ({float(field.min()):.1f}-{float(field.max()):.1f} K) left the validity range "
            f"of '{self.material.name}' ({self.material.min_temperature}-{self.material.max_temperature} K)."
        )
        logger.warning(message)
        self._warnings.append(message)

    def _publish(self, start_wall: float, force: bool = False, status: Optional[RunStatus] = None) -> None:
        now = time.perf_counter()
        if not force and now - self._last_publish < self.limits.progress_interval:
            return
        self._last_publish = now

        total = self.config.simulation.total_time
        current = self.solver.time if self.solver else 0.0
        step = self.solver.step_count if self.solver else 0
        with self._lock:
            status = status or self._status
            fraction = min(current / total, 1.0)
            if status == RunStatus.COMPLETED:
                percent, remaining = 100.0, 0.0
            else:
                # 100 % is reserved for completed runs
                percent = min(100.0 * fraction, 99.99)
                elapsed = now - start_wall
                remaining = elapsed * (1.0 - fraction) / fraction if fraction > 0 else None
                if status.is_terminal:
                    remaining = None
            self._progress = Progress(
                percent=percent,
                current_time=current,
                estimated_remaining=remaining,
                step=step,
                status=status,
            )
            progress = self._progress

        logger.debug(f"Progress: {progress.percent:.1f}% (t={current:.3f}s, step={step})")
        if self.progress_callback is not None:
            self.progress_callback(progress)

    def _finish(
        self,
        status: RunStatus,
        snapshots: list[Snapshot],
        monitor: EnergyMonitor,
        failure: Optional[FailureInfo],
        start_wall: float,
    ) -> SimulationResult:
        wall_time = time.perf_counter() - start_wall
        solver = self.solver
        if snapshots:
            t_min = min(s.min_temperature for s in snapshots)
            t_max = max(s.max_temperature for s in snapshots)
        else:
            t_min = t_max = self.config.boundary.initial_temperature

        metadata = ResultMetadata(
            material=self.material.name,
            torch_positions=tuple(t.position for t in self.heat_sources.torches),
            geometry={"radius": self.mesh.radius, "height": self.mesh.height},
            mesh_resolution=(self.mesh.nr, self.mesh.nz),
            min_temperature=t_min,
            max_temperature=t_max,
            steps_completed=solver.step_count if solver else 0,
            final_time=solver.time if solver else 0.0,
            requested_time=self.config.simulation.total_time,
            wall_time=wall_time,
            energy=monitor.summary(),
            warnings=tuple(self._warnings),
        )
        with self._lock:
            # A cancel that arrived after the last loop check still wins over completion
            if status == RunStatus.COMPLETED and self._cancel_event.is_set():
                logger.info("Cancellation requested while finishing, run ends cancelled.")
                status = RunStatus.CANCELLED
            result = SimulationResult(status=status, snapshots=tuple(snapshots), metadata=metadata, failure=failure)
            self._status = status
            self._result = result
        self._publish(start_wall, force=True, status=status)

        logger.info(
            f"Simulation {status}: {metadata.steps_completed} steps, t={metadata.final_time:.3f}s, "
            f"{len(snapshots)} snapshot(s), {wall_time:.2f}s wall time"
        )
        return result

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Optional

import numpy as np

from plasmafurnace.config import (
    DEFAULT_CFL_FACTOR,
    MAX_TIME_STEP,
    MIN_TIME_STEP,
    REFERENCE_TEMPERATURE,
)
from plasmafurnace.controller.fea.pre.heat_sources import WallCondition
from plasmafurnace.controller.fea.solvers.kernels import (
    field_is_valid,
    forward_euler_sweep,
    forward_euler_sweep_parallel,
)
from plasmafurnace.errors import ConfigurationError, FormulaEvaluationError, NumericalInstability

if TYPE_CHECKING:
    import numpy.typing as npt

    from plasmafurnace.controller.fea.pre.heat_sources import HeatSourceModel
    from plasmafurnace.controller.fea.pre.material import Material
    from plasmafurnace.controller.fea.pre.mesh import Mesh

logger = logging.getLogger(__name__)


def cfl_limit(mesh: Mesh, alpha: float, cfl_factor: float) -> float:
    """Unclamped explicit stability limit cfl·min(dr², dz²) / (2α) in s."""
    if not alpha > 0:
        raise ConfigurationError(f"Thermal diffusivity must be positive, got {alpha}.", parameter="material")
    return cfl_factor * min(mesh.dr, mesh.dz) ** 2 / (2.0 * alpha)


def compute_stable_dt(
    mesh: Mesh,
    material: Material,
    cfl_factor: float = DEFAULT_CFL_FACTOR,
    reference_temperature: float = REFERENCE_TEMPERATURE,
) -> float:
    """
    Stable explicit time step for a mesh and material.

    Args:
        mesh: The mesh (dr, dz).
        material: Material whose diffusivity is evaluated at `reference_temperature`.
        cfl_factor: Safety factor, (0, 1].
        reference_temperature: Evaluation temperature in K.

    Returns:
        The CFL limit clamped to [MIN_TIME_STEP, MAX_TIME_STEP].
    """
    alpha = float(material.diffusivity(reference_temperature))
    return float(np.clip(cfl_limit(mesh, alpha, cfl_factor), MIN_TIME_STEP, MAX_TIME_STEP))


class Solver:
    """
    Explicit (forward Euler) finite difference solver for the axisymmetric
    heat equation.

    One call to :meth:`step` performs:
    compute interior updates -> apply boundary conditions -> validate -> commit.

    The field is double buffered: the sweep reads the current buffer and
    writes the next one, the buffers are swapped only when the new field is
    valid.
    """

    def __init__(
        self,
        mesh: Mesh,
        material: Material,
        heat_sources: HeatSourceModel,
        initial_temperature: float,
        cfl_factor: float = DEFAULT_CFL_FACTOR,
        reference_temperature: float = REFERENCE_TEMPERATURE,
        use_field_maximum: bool = False,
        parallel: bool = False,
    ) -> None:
        """
        Initialize the solver with a uniform temperature field.

        Args:
            mesh: The computational mesh.
            material: Material filling the furnace.
            heat_sources: Torches and wall loss model.
            initial_temperature: Uniform initial temperature in K.
            cfl_factor: Safety factor applied to the stability limit, (0, 1].
            reference_temperature: Temperature at which the diffusivity for the
                stability limit is evaluated.
            use_field_maximum: Also take the largest diffusivity over the current
                field into account when computing the stable time step.
            parallel: Use the multi-threaded Numba kernel.
        """
        if not 0.0 < cfl_factor <= 1.0:
            raise ConfigurationError(f"CFL factor must be within (0, 1], got {cfl_factor}.", parameter="cfl_factor")
        if not initial_temperature > 0:
            raise ConfigurationError(
                f"Initial temperature must be positive, got {initial_temperature} K.",
                parameter="boundary.initial_temperature",
            )

        self.mesh = mesh
        self.material = material
        self.heat_sources = heat_sources
        self.cfl_factor = float(cfl_factor)
        self.reference_temperature = float(reference_temperature)
        self.use_field_maximum = use_field_maximum
        self._sweep = forward_euler_sweep_parallel if parallel else forward_euler_sweep

        self._current = np.full(mesh.shape, float(initial_temperature), dtype=np.float64)
        self._next = np.empty_like(self._current)

        self.time = 0.0
        self.step_count = 0

        # Torch flux is constant in time unless a source formula depends on t or T
        self._static_source: Optional[npt.NDArray[np.float64]] = None
        if not heat_sources.is_time_dependent:
            self._static_source = heat_sources.source_field(mesh)

    # --- State access ---

    @property
    def temperature(self) -> npt.NDArray[np.float64]:
        """Read-only view of the current field, shape (nr, nz)."""
        view = self._current.view()
        view.flags.writeable = False
        return view

    def snapshot(self) -> npt.NDArray[np.float64]:
        """Independent copy of the current field."""
        return self._current.copy()

    def source_field(self, time: Optional[float] = None) -> npt.NDArray[np.float64]:
        """Volumetric heat source (W/m³) used for the step starting at `time`."""
        if self._static_source is not None:
            return self._static_source
        return self.heat_sources.source_field(
            self.mesh, time=self.time if time is None else time, temperature=self._current
        )

    # --- Stability ---

    def max_stable_dt(self) -> float:
        """
        Unclamped CFL limit cfl·min(dr², dz²) / (2α).

        α is the diffusivity at the reference temperature, or the largest of
        that and the diffusivity over the current field when
        `use_field_maximum` is set.
        """
        try:
            alpha = float(self.material.diffusivity(self.reference_temperature))
            if self.use_field_maximum:
                alpha = max(alpha, float(np.max(self.material.diffusivity(self._current))))
        except (ConfigurationError, FormulaEvaluationError) as e:
            # Material properties left their valid range during the run
            raise NumericalInstability(self.step_count + 1, self.time, reason=str(e)) from e
        return cfl_limit(self.mesh, alpha, self.cfl_factor)

    def compute_stable_dt(self) -> float:
        """CFL limited time step, clamped to [MIN_TIME_STEP, MAX_TIME_STEP]."""
        return float(np.clip(self.max_stable_dt(), MIN_TIME_STEP, MAX_TIME_STEP))

    def check_stability(self, dt: float) -> None:
        """
        Raises:
            NumericalInstability: If dt exceeds the CFL limit.
        """
        limit = self.max_stable_dt()
        if dt > limit:
            raise NumericalInstability(
                self.step_count,
                self.time,
                reason=f"time step {dt:.6g} s exceeds the stability limit {limit:.6g} s",
            )

    # --- Time stepping ---

    def compute_interior_updates(self, dt: float, out: npt.NDArray[np.float64]) -> None:
        """Forward Euler sweep over all nodes from the current into `out`."""
        k, rho_cp = self.material.props_batch(self._current)
        alpha = np.ascontiguousarray(k / rho_cp)
        heating = np.ascontiguousarray(self.source_field() / rho_cp)
        self._sweep(self._current, alpha, heating, self.mesh.r, self.mesh.dr, self.mesh.dz, dt, out)

    def apply_boundary_conditions(self, field: npt.NDArray[np.float64]) -> None:
        """
        Overwrite boundary nodes of `field` in place.

        Order matters for the corners: bottom/top first, then the axis and
        the outer wall, which take precedence.
        """
        # Bottom / top: adiabatic, zero gradient along z
        field[1:-1, 0] = field[1:-1, 1] if field.shape[1] > 2 else field[1:-1, 0]
        field[1:-1, -1] = field[1:-1, -2] if field.shape[1] > 2 else field[1:-1, -1]

        # Axis: symmetry, zero gradient along r
        field[0, :] = field[1, :]

        boundary = self.heat_sources.boundary
        wall = boundary.wall
        interior = field[-2, :] if field.shape[0] > 2 else field[0, :]
        if wall == WallCondition.ADIABATIC:
            field[-1, :] = interior
        elif wall == WallCondition.FIXED:
            field[-1, :] = boundary.wall_temperature
        else:
            # k·(T_int - T_wall)/dr = q_conv + q_rad, losses at the last wall temperature
            t_wall_old = self._current[-1, :]
            k_wall = np.asarray(self.material.thermal_conductivity(t_wall_old), dtype=np.float64)
            q_loss = np.asarray(self.heat_sources.wall_loss(t_wall_old, self.material.emissivity))
            t_wall = interior - q_loss * self.mesh.dr / k_wall
            field[-1, :] = np.maximum(t_wall, boundary.ambient_temperature)

    def validate(self, field: npt.NDArray[np.float64], time: float) -> None:
        if not field_is_valid(field):
            bad = int(np.count_nonzero(~np.isfinite(field) | (field < 0)))
            raise NumericalInstability(
                self.step_count + 1, time, reason=f"{bad} non-finite or negative temperature(s)"
            )

    def step(self, dt: float) -> float:
        """
        Advance the field by one time step.

        Args:
            dt: Time step in s; must not exceed the stability limit.

        Returns:
            The new simulation time.

        Raises:
            NumericalInstability: On a CFL breach or an invalid new field. The
                current field is left untouched in that case.
        """
        self.check_stability(dt)
        new_time = self.time + dt
        try:
            self.compute_interior_updates(dt, self._next)
            self.apply_boundary_conditions(self._next)
        except (ConfigurationError, FormulaEvaluationError) as e:
            raise NumericalInstability(self.step_count + 1, new_time, reason=str(e)) from e
        self.validate(self._next, new_time)

        # Commit
        self._current, self._next = self._next, self._current
        self.time = new_time
        self.step_count += 1
        return new_time

"""
Parametric Studies
==================
Runs the same configuration repeatedly while one parameter is swept.

Parameters are addressed by dotted paths into the configuration dict, list
entries by their index: ``"geometry.height"``, ``"torches.0.power"``,
``"boundary.convection_coefficient"``.
"""
from __future__ import annotations

import copy
import logging
import threading
from dataclasses import dataclass
from typing import Any, Callable, Optional, Sequence, Union

import numpy as np

from plasmafurnace.config import EngineLimits
from plasmafurnace.controller.engine import SimulationEngine
from plasmafurnace.errors import ConfigurationError
from plasmafurnace.model.materials import MaterialLibrary
from plasmafurnace.model.state import Progress, RunStatus, SimulationConfig, SimulationResult

logger = logging.getLogger(__name__)


def linspace(min_value: float, max_value: float, steps: int) -> list[float]:
    """`steps` evenly spaced values from min_value to max_value inclusive."""
    if steps < 1:
        raise ConfigurationError(f"A sweep needs at least one step, got {steps}.", parameter="steps")
    return [float(v) for v in np.linspace(min_value, max_value, steps)]


def set_parameter(data: dict[str, Any], path: str, value: Any) -> dict[str, Any]:
    """
    Return a deep copy of `data` with the value at the dotted `path` replaced.

    Raises:
        ConfigurationError: If the path does not address an existing entry.
    """
    result = copy.deepcopy(data)
    keys = path.split(".")
    node: Any = result
    for depth, key in enumerate(keys):
        last = depth == len(keys) - 1
        if isinstance(node, list):
            try:
                index = int(key)
                if last:
                    node[index] = value
                else:
                    node = node[index]
            except (ValueError, IndexError) as e:
                raise ConfigurationError(f"Invalid list index '{key}' in parameter path '{path}'.", parameter=path) from e
        elif isinstance(node, dict):
            if key not in node and not last:
                raise ConfigurationError(f"Unknown section '{key}' in parameter path '{path}'.", parameter=path)
            if last:
                node[key] = value
            else:
                node = node[key]
        else:
            raise ConfigurationError(f"Parameter path '{path}' descends into a scalar.", parameter=path)
    return result


@dataclass(frozen=True)
class ParametricParameter:
    name: str
    min_value: float
    max_value: float
    steps: int

    def values(self) -> list[float]:
        return linspace(self.min_value, self.max_value, self.steps)


class ParametricStudy:
    """
    Sequential sweep of one parameter.

    Every configuration is built and validated up front, so an invalid value
    is reported before the first run starts.

    Args:
        base_config: Configuration shared by all runs.
        parameter: Dotted path of the swept parameter.
        values: Values to assign, in run order.
        library: Material library passed to every engine.
        limits: Resource limits passed to every engine.
    """

    def __init__(
        self,
        base_config: Union[SimulationConfig, dict[str, Any]],
        parameter: str,
        values: Sequence[float],
        library: Optional[MaterialLibrary] = None,
        limits: Optional[EngineLimits] = None,
    ) -> None:
        if isinstance(base_config, SimulationConfig):
            base_config = base_config.to_dict()
        if not values:
            raise ConfigurationError("A parametric study needs at least one value.", parameter=parameter)
        self.parameter = parameter
        self.values = list(values)
        self.library = library or MaterialLibrary()
        self.limits = limits or EngineLimits()
        self.configs = [SimulationConfig.from_dict(set_parameter(base_config, parameter, v)) for v in self.values]
        self.results: list[tuple[float, SimulationResult]] = []

        self._cancel_event = threading.Event()
        self._current: Optional[SimulationEngine] = None
        self._lock = threading.Lock()

    @classmethod
    def from_parameter(
        cls,
        base_config: Union[SimulationConfig, dict[str, Any]],
        parameter: ParametricParameter,
        **kwargs: Any,
    ) -> ParametricStudy:
        return cls(base_config, parameter.name, parameter.values(), **kwargs)

    def run(self, progress_callback: Optional[Callable[[int, Progress], None]] = None) -> list[tuple[float, SimulationResult]]:
        """
        Run every configuration in order.

        Args:
            progress_callback: Called with (run index, Progress) of the active run.

        Returns:
            (value, result) pairs of the runs that were started. A cancelled
            study stops after the active run.
        """
        self.results = []
        logger.info(f"Parametric study over '{self.parameter}': {len(self.values)} run(s)")
        for index, (value, config) in enumerate(zip(self.values, self.configs)):
            if self._cancel_event.is_set():
                logger.info(f"Parametric study cancelled before run {index}.")
                break

            callback = None
            if progress_callback is not None:
                callback = lambda progress, i=index: progress_callback(i, progress)
            engine = SimulationEngine(config, library=self.library, limits=self.limits, progress_callback=callback)
            with self._lock:
                self._current = engine
            # A cancel that raced the engine creation
            if self._cancel_event.is_set():
                engine.cancel()

            logger.info(f"Run {index + 1}/{len(self.values)}: {self.parameter} = {value}")
            result = engine.run()
            self.results.append((value, result))
            if result.status == RunStatus.FAILED:
                logger.warning(f"Run with {self.parameter} = {value} failed: {result.failure.reason}")

        with self._lock:
            self._current = None
        return self.results

    def cancel(self) -> None:
        """Stop the active run and skip the remaining ones."""
        self._cancel_event.set()
        with self._lock:
            if self._current is not None:
                self._current.cancel()

    def summary(self) -> list[dict[str, Any]]:
        """One row per finished run: value, status, peak temperature, final time."""
        return [
            {
                "value": value,
                "status": result.status.value,
                "max_temperature": result.metadata.max_temperature,
                "final_time": result.metadata.final_time,
            }
            for value, result in self.results
        ]

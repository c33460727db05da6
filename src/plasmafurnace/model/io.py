"""
Input/Output Manager (HDF5)
Handles saving and loading simulation results to .h5 files, run
configurations to JSON and temperature grids to CSV.
"""
import csv
import json
import logging
import os
from importlib.metadata import PackageNotFoundError, version
from typing import Any, Optional

import h5py
import numpy as np

from plasmafurnace.controller.fea.utils import kelvin_to_celsius, node_coordinates
from plasmafurnace.errors import ConfigurationError
from plasmafurnace.model.state import (
    FailureInfo,
    ResultMetadata,
    RunStatus,
    SimulationConfig,
    SimulationResult,
    Snapshot,
)

# Get module logger
logger = logging.getLogger(__name__)

try:
    APP_VERSION = version("plasmafurnace")
except PackageNotFoundError:
    APP_VERSION = "0.0.0-dev"

# HDF5 attributes are limited to 64 KB
_ATTRIBUTE_LIMIT = 60000


def _write_json(group: h5py.Group, name: str, data: Any) -> None:
    """Store JSON as an attribute, or as a dataset when it is too large."""
    text = json.dumps(data)
    if len(text) > _ATTRIBUTE_LIMIT:
        logger.info(f"'{name}' is large ({len(text)} bytes), using dataset")
        group.create_dataset(name, data=np.void(text.encode("utf-8")))
    else:
        group.attrs[name] = text


def _read_json(group: h5py.Group, name: str) -> Optional[Any]:
    if name in group:
        text = bytes(group[name][()]).decode("utf-8")
    elif name in group.attrs:
        text = group.attrs[name]
        if isinstance(text, bytes):
            text = text.decode("utf-8")
    else:
        return None
    return json.loads(text)


class IOManager:

    @staticmethod
    def save_result(
        result: SimulationResult,
        filepath: str,
        config: Optional[SimulationConfig] = None,
    ) -> None:
        """
        Write a result (and optionally the configuration that produced it).

        Layout:
            /attrs: version, status
            /metadata (JSON attribute), /failure (JSON attribute, failed runs)
            /config (JSON attribute)
            /results/times (n,), /results/temperatures (n, nz, nr)
        """
        logger.info(f"Saving result to: {filepath}")
        try:
            with h5py.File(filepath, "w") as f:
                f.attrs["version"] = APP_VERSION
                f.attrs["status"] = result.status.value

                _write_json(f, "metadata", result.metadata.to_dict())
                if result.failure is not None:
                    _write_json(f, "failure", {
                        "reason": result.failure.reason,
                        "error_type": result.failure.error_type,
                        "step": result.failure.step,
                        "time": result.failure.time,
                    })
                if config is not None:
                    _write_json(f, "config", config.to_dict())

                grp_res = f.create_group("results")
                grp_res.create_dataset("times", data=result.times)
                # Stack: (T, nz, nr)
                grp_res.create_dataset("temperatures", data=result.temperatures(), compression="gzip")
                logger.debug(f"Saved {len(result.snapshots)} result frames.")

            logger.info(f"Result saved to: {filepath}")

        except Exception as e:
            logger.exception(f"Failed to save result: {e}")
            raise

    @staticmethod
    def load_result(filepath: str) -> tuple[SimulationResult, Optional[SimulationConfig]]:
        """
        Read a file written by save_result.

        Returns:
            Tuple (result, config); config is None when it was not stored.
        """
        logger.info(f"Loading result from: {filepath}")
        if not h5py.is_hdf5(filepath):
            msg = f"File '{filepath}' is not a valid HDF5 file."
            logger.error(msg)
            raise ValueError(msg)

        with h5py.File(filepath, "r") as f:
            file_version = f.attrs.get("version", "unknown")
            if file_version != APP_VERSION:
                logger.debug(f"File written by version {file_version}, running {APP_VERSION}.")

            status = RunStatus(str(f.attrs["status"]))
            metadata = ResultMetadata.from_dict(_read_json(f, "metadata"))

            failure = None
            failure_data = _read_json(f, "failure")
            if failure_data is not None:
                failure = FailureInfo(**failure_data)

            config = None
            config_data = _read_json(f, "config")
            if config_data is not None:
                config = SimulationConfig.from_dict(config_data)

            snapshots: list[Snapshot] = []
            if "results" in f:
                times = np.asarray(f["results/times"][()], dtype=np.float64)
                temperatures = np.asarray(f["results/temperatures"][()], dtype=np.float64)
                for t, grid in zip(times, temperatures):
                    grid = grid.copy()
                    grid.flags.writeable = False
                    snapshots.append(Snapshot(time=float(t), grid=grid))

        logger.info(f"Loaded {len(snapshots)} snapshot(s) from: {filepath}")
        return SimulationResult(status=status, snapshots=tuple(snapshots), metadata=metadata, failure=failure), config

    # ---- CONFIGURATION ----
    @staticmethod
    def load_config(filepath: str) -> SimulationConfig:
        logger.info(f"Loading configuration from: {filepath}")
        if not os.path.exists(filepath):
            raise FileNotFoundError(f"Configuration file '{filepath}' does not exist.")
        with open(filepath, mode="r", encoding="utf-8") as f:
            try:
                data = json.load(f)
            except json.JSONDecodeError as e:
                raise ConfigurationError(f"Configuration file '{filepath}' is not valid JSON: {e}") from e
        return SimulationConfig.from_dict(data)

    @staticmethod
    def save_config(config: SimulationConfig, filepath: str) -> None:
        with open(filepath, mode="w", encoding="utf-8") as f:
            json.dump(config.to_dict(), f, indent=2)
        logger.info(f"Configuration saved to: {filepath}")

    # ---- EXPORT HELPERS ----
    @staticmethod
    def export_snapshot_csv(snapshot: Snapshot, filepath: str, radius: float, height: float) -> None:
        """
        Write one snapshot as rows of (r [m], z [m], T [K], T [C]).
        """
        nz, nr = snapshot.grid.shape
        r = node_coordinates(radius, nr)
        z = node_coordinates(height, nz)
        with open(filepath, mode="w", newline="", encoding="utf-8") as f:
            writer = csv.writer(f)
            writer.writerow(["r_m", "z_m", "temperature_K", "temperature_C"])
            for j in range(nz):
                for i in range(nr):
                    t = float(snapshot.grid[j, i])
                    writer.writerow([f"{r[i]:.6g}", f"{z[j]:.6g}", f"{t:.6f}", f"{kelvin_to_celsius(t):.6f}"])
        logger.info(f"Snapshot at t={snapshot.time:.3f}s exported to: {filepath}")

    @staticmethod
    def export_results_csv(result: SimulationResult, parent_dir: str) -> str:
        """
        Exports every snapshot as case_t{seconds}.csv into `parent_dir/results`.

        Returns:
            The output directory.
        """
        if not result.snapshots:
            raise ValueError("No results to export.")

        output_dir = os.path.join(parent_dir, "results")
        os.makedirs(output_dir, exist_ok=True)
        logger.info(f"Exporting {len(result.snapshots)} frames to {output_dir}...")

        radius = result.metadata.geometry["radius"]
        height = result.metadata.geometry["height"]
        for index, snapshot in enumerate(result.snapshots):
            filename = f"case_{index:04d}_t{snapshot.time:.0f}.csv"
            IOManager.export_snapshot_csv(snapshot, os.path.join(output_dir, filename), radius, height)

        logger.info("Export complete.")
        return output_dir

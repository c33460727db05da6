"""Transient heat transfer in an axisymmetric plasma furnace."""
from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("plasmafurnace")
except PackageNotFoundError:
    __version__ = "0.0.0-dev"

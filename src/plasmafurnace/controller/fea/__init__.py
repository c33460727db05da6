"""
Finite Difference Engine
========================
The core implementation of the furnace heat transfer analysis.

Why is this file needed?
------------------------
1. Physics: It implements the axisymmetric heat equation, the torch sources
   and the wall losses.
2. Numerics: The explicit sweep kernels and the stability limit live here.
3. Post-processing: Spread metrics and the energy balance of a run.

Note: This module should be pure Python/NumPy/Numba and should NOT import
matplotlib.
"""

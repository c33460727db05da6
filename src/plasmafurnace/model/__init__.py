"""
The MODEL layer contains pure data structures and persistence.
It has NO knowledge of the numerics (Numba kernels) or of plotting.
It deals with run configurations, results, materials and I/O.
"""

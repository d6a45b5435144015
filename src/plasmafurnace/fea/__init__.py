"""
Finite Volume Engine
====================
The numerical core of the furnace simulation.

Why is this file needed?
------------------------
1. Physics: It implements the enthalpy form of the heat equation on a
   cylindrical finite-volume mesh, torch sources and wall losses.
2. Time-Stepping: It advances the enthalpy field one explicit step at a time.

Note: This package should be pure Python/NumPy/Numba and should NOT know about
sessions, studies or any host interface.
"""

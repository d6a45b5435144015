"""
The CONTROLLER layer drives the numerical core: it owns simulation sessions,
derives metrics, runs parametric studies and validates results.
"""

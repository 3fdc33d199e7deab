"""
harnessview - execution-aware live display coordination for the test harness.
"""

__version__ = "0.1.0"

__all__ = ["__version__"]

"""
stochrisk

Quantitative risk and model-selection engine. Pure computation over
time-series and return data; see ``stochrisk.engine`` for the analytics and
``stochrisk.runtime`` for the caller-side registry and execution wrappers.
"""

__version__ = "0.1.0"

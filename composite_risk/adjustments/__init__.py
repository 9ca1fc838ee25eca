"""
Adjustment Engines.

Two independent, individually toggle-able, bounded additive
deltas applied to the raw composite before band classification.
"""

from .cycle import compute_cycle_adjustment
from .spike import compute_spike_adjustment, ewma_sigma


__all__ = [
    "compute_cycle_adjustment",
    "compute_spike_adjustment",
    "ewma_sigma",
]

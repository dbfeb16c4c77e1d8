"""Staff scheduling service: weekly shifts, swaps, time-off and availability."""

__version__ = "0.1.0"

"""Pure computation: routing, calibration, fact math, spreads, debt service."""

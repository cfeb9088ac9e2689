"""content-refinery - iterative generate, critique and refine pipeline."""

__version__ = "0.1.0"

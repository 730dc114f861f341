"""content-pipeline: recovery-driven article generation with secure asset fetching."""

__version__ = "0.1.0"

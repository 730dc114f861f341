"""Core building blocks: timing, coverage, secure fetch, resilience, pipeline."""

"""Pipeline orchestration and published job state."""

"""Job-state persistence."""

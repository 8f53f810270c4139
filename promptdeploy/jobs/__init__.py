"""Job submission, execution and status."""

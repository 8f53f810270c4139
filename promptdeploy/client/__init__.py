"""API client and status poller."""

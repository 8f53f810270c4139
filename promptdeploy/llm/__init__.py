"""LLM provider adapters and routing."""

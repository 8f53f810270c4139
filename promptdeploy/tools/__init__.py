"""Sandbox environments and output sanitization."""

"""PromptDeploy: turn a prompt into a running web app."""

__version__ = "0.1.0"

"""Brainstormer API: distills brain-dump text into actionable task sections."""

__version__ = "0.1.0"

"""Reporting agent: persistent report scheduling and threshold alerting."""

__version__ = "0.1.0"

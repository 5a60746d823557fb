"""Missionforce - goal-driven mission orchestration for email and calendar work."""

__version__ = "0.1.0"

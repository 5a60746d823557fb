"""Tool adapters."""

from missionforce.infrastructure.tools.sandbox_adapter import SandboxToolAdapter, demo_threads

__all__ = ["SandboxToolAdapter", "demo_threads"]

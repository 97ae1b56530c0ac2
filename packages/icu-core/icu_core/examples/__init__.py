"""
ICU Example Step Operations.

Simple offline operations for exercising the orchestrator.
"""
from .nodes import echo, outline, draft_section, assemble, fail

__all__ = [
    "echo",
    "outline",
    "draft_section",
    "assemble",
    "fail",
]

"""
ICU Pipelines - ready-made step chains and the ProjectManager helper.
"""
from .patterns import extract_code, parallel_steps, refinement_steps, sequential_steps
from .project_manager import ProjectManager

__all__ = [
    "ProjectManager",
    "sequential_steps",
    "parallel_steps",
    "refinement_steps",
    "extract_code",
]

"""
ICU CLI - pipeline run and validation commands.
"""
from .main import cli, main

__all__ = ["cli", "main"]

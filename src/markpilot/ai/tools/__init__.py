"""Tool schemas, argument parsing and execution against the editor."""

from . import definitions, executor, find_replace

__all__ = ["definitions", "executor", "find_replace"]

"""
Execution policy gate.
"""

from .execution_policy import EXPERIMENTAL_CHAIN_KINDS, ExecutionPolicy

__all__ = ["EXPERIMENTAL_CHAIN_KINDS", "ExecutionPolicy"]

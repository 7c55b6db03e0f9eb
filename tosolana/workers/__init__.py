"""
Background Workers
"""

from .finality_reconciler import FinalityReconciler, ReconcileResult

__all__ = ["FinalityReconciler", "ReconcileResult"]

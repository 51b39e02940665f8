"""Event-sourced claimable-order projection."""

from .reconciler import OrderReconciler, reconcile
from .tracker import ClaimableOrdersTracker, ReconciliationRun

__all__ = ["ClaimableOrdersTracker", "OrderReconciler", "ReconciliationRun", "reconcile"]

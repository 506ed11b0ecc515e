"""
GeoProfile Core - Reconciliation Pipeline.

Provides the per-device processing that ties together the policy store,
policy selection and the reconciliation engine.
"""

from geoprofile.core.processor import (
    ConnectionProcessor,
    ReconciliationContext,
    create_processor,
)
from geoprofile.core.reconciler import (
    ForceApplyResult,
    ReconciliationEngine,
    ReconciliationResult,
)

__all__ = [
    "ConnectionProcessor",
    "ForceApplyResult",
    "ReconciliationContext",
    "ReconciliationEngine",
    "ReconciliationResult",
    "create_processor",
]

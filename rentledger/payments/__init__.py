"""
Mobile money payments: gateway boundary and ledger reconciliation.
"""

from .gateways import (
    Gateway,
    GatewayResult,
    InitiationResult,
    MtnMomoGateway,
    AirtelMoneyGateway,
    MTN_STATUS_MAP,
    AIRTEL_STATUS_MAP,
    build_gateways,
)
from .reconciler import PaymentReconciler, ReconcileResult, correlation_id_for

__all__ = [
    'Gateway',
    'GatewayResult',
    'InitiationResult',
    'MtnMomoGateway',
    'AirtelMoneyGateway',
    'MTN_STATUS_MAP',
    'AIRTEL_STATUS_MAP',
    'build_gateways',
    'PaymentReconciler',
    'ReconcileResult',
    'correlation_id_for',
]

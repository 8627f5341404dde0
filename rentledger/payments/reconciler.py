"""
PaymentReconciler: turns gateway results into ledger credits, exactly once.

Per attempt: pending -> completed | failed. Both end states are terminal.
The status change and the payment transaction commit together inside
LedgerStore.attempt_scope(), and the payment's cycle key (attempt:<id>)
rejects a second credit for the same attempt at the database.
"""

import logging
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Any, Dict, Optional

import requests

from rentledger.billing.errors import (
    DuplicateCycleCharge, InvalidState, MalformedCallback, ValidationError
)
from rentledger.billing.store import LedgerStore
from rentledger.common.config import BillingPolicy
from rentledger.common.date_utils import today_in_timezone
from rentledger.common.models import PaymentAttempt
from .gateways import COMPLETED, FAILED, PENDING, Gateway, GatewayResult


logger = logging.getLogger(__name__)


# Outcomes reported by on_gateway_result()
OUTCOME_COMPLETED = 'completed'
OUTCOME_FAILED = 'failed'
OUTCOME_PENDING = 'pending'
OUTCOME_ALREADY_COMPLETED = 'already_completed'
OUTCOME_IGNORED = 'ignored'
OUTCOME_UNREACHABLE = 'unreachable'


def payment_cycle_key(attempt_id: str) -> str:
    return f"attempt:{attempt_id}"


def correlation_id_for(lease_id: str, now: Optional[datetime] = None) -> str:
    """RENT-<first 8 chars of lease id>-<epoch milliseconds>"""
    now = now or datetime.now(timezone.utc)
    return f"RENT-{lease_id[:8]}-{int(now.timestamp() * 1000)}"


@dataclass
class ReconcileResult:
    """What one gateway result did to an attempt."""
    attempt_id: str
    outcome: str
    transaction_id: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'attempt_id': self.attempt_id,
            'outcome': self.outcome,
            'transaction_id': self.transaction_id,
        }


class PaymentReconciler:
    """
    Initiates collections and reconciles their results into the ledger.

    Example:
        reconciler = PaymentReconciler(store, build_gateways())
        attempt = reconciler.initiate(lease_id, 'mtn', 250000, '0771234567')
        reconciler.handle_callback('mtn', payload)
    """

    def __init__(
        self,
        store: LedgerStore,
        gateways: Dict[str, Gateway],
        policy: Optional[BillingPolicy] = None,
    ):
        self.store = store
        self.gateways = gateways
        self.policy = policy or BillingPolicy()

    def _gateway(self, name: str) -> Gateway:
        gateway = self.gateways.get(name)
        if gateway is None:
            raise ValidationError(f"Invalid gateway: {name}. Must be one of {', '.join(sorted(self.gateways))}")
        return gateway

    def initiate(self, lease_id: str, gateway_name: str, amount: int, payer_handle: str) -> PaymentAttempt:
        """
        Create a pending attempt and ask the gateway to collect.

        A rejected or timed-out request leaves the attempt failed with the reason.

        Raises:
            ValidationError: Bad amount, gateway or phone number
            NotFound: No lease with this id
            InvalidState: Lease not active
        """
        gateway = self._gateway(gateway_name)
        if not isinstance(amount, int) or isinstance(amount, bool) or amount <= 0:
            raise ValidationError("Amount must be greater than 0")
        try:
            payer = gateway.normalize_payer(payer_handle)
        except ValueError as e:
            raise ValidationError(str(e)) from e

        lease = self.store.get_lease(lease_id)
        if lease.status != 'active':
            raise InvalidState(f"Lease {lease_id} is {lease.status}; payments need an active lease")

        with self.store.session_scope() as session:
            attempt = PaymentAttempt(
                lease_id=lease_id,
                gateway=gateway.name,
                payer_handle=payer,
                amount=amount,
                status=PENDING,
            )
            session.add(attempt)
            session.flush()
            attempt_id = attempt.id

        correlation_id = correlation_id_for(lease_id)
        logger.info(f"Initiating {gateway.name} payment {attempt_id} ({correlation_id}) for {amount}")
        result = gateway.initiate(amount, payer, correlation_id, f"Rent Payment - {lease_id[:8]}")

        with self.store.session_scope() as session:
            attempt = session.get(PaymentAttempt, attempt_id)
            if result.accepted:
                attempt.gateway_reference = result.gateway_reference
                attempt.gateway_payload = {
                    'correlation_id': correlation_id,
                    'initiated_at': datetime.now(timezone.utc).isoformat(),
                }
            else:
                attempt.status = FAILED
                attempt.failure_reason = result.reason or 'Payment initiation failed'
                attempt.gateway_payload = {'correlation_id': correlation_id, 'error': attempt.failure_reason}
                logger.warning(f"Payment {attempt_id} initiation failed: {attempt.failure_reason}")

        return attempt

    def on_gateway_result(self, attempt_id: str, result: GatewayResult, received_on: Optional[date] = None) -> ReconcileResult:
        """
        Apply a gateway status to an attempt.

        completed -> posts the payment credit and links it, atomically.
        failed -> records the reason, posts nothing.
        pending -> records the payload only.
        A terminal attempt ignores further results.

        Raises:
            NotFound: No attempt with this id
        """
        received_on = received_on or today_in_timezone(self.policy.timezone)

        try:
            with self.store.attempt_scope(attempt_id) as (attempt, ledger):
                if attempt.status == COMPLETED:
                    logger.info(f"Payment {attempt_id} already completed; ignoring repeated {result.raw_status}")
                    return ReconcileResult(attempt_id, OUTCOME_ALREADY_COMPLETED, attempt.transaction_id)
                if attempt.status == FAILED:
                    logger.info(f"Payment {attempt_id} already failed; ignoring {result.raw_status}")
                    return ReconcileResult(attempt_id, OUTCOME_IGNORED)

                payload = dict(attempt.gateway_payload or {})
                payload['last_result'] = result.payload
                payload['last_result_at'] = datetime.now(timezone.utc).isoformat()
                attempt.gateway_payload = payload

                if result.status == PENDING:
                    return ReconcileResult(attempt_id, OUTCOME_PENDING)

                if result.status == FAILED:
                    attempt.status = FAILED
                    attempt.failure_reason = result.reason or f"Gateway status {result.raw_status}"
                    logger.info(f"Payment {attempt_id} failed: {attempt.failure_reason}")
                    return ReconcileResult(attempt_id, OUTCOME_FAILED)

                gateway = self._gateway(attempt.gateway)
                txn = ledger.append(
                    'payment',
                    -attempt.amount,
                    gateway.payment_description(result.external_reference),
                    received_on,
                    cycle_key=payment_cycle_key(attempt.id),
                )
                attempt.status = COMPLETED
                attempt.transaction_id = txn.id
                attempt.external_reference = result.external_reference
                attempt.completed_at = datetime.now(timezone.utc)
                logger.info(
                    f"Payment {attempt_id} completed: credited {attempt.amount} to lease "
                    f"{attempt.lease_id} (txn {txn.id})"
                )
                return ReconcileResult(attempt_id, OUTCOME_COMPLETED, txn.id)

        except DuplicateCycleCharge:
            # Another worker completed this attempt between our read and insert
            logger.info(f"Payment {attempt_id} credited concurrently; no second credit")
            return ReconcileResult(attempt_id, OUTCOME_ALREADY_COMPLETED)

    def handle_callback(self, gateway_name: str, payload: Dict[str, Any]) -> Optional[ReconcileResult]:
        """
        Reconcile a webhook delivery.

        Malformed payloads are logged and dropped (returns None).

        Raises:
            NotFound: No attempt carries the callback's reference
        """
        gateway = self._gateway(gateway_name)
        try:
            result = gateway.parse_callback(payload)
        except MalformedCallback as e:
            logger.warning(f"Dropped malformed {gateway_name} callback: {e}")
            return None

        logger.info(f"{gateway_name} callback for {result.gateway_reference}: {result.raw_status}")
        attempt = self.store.find_attempt(gateway.name, result.gateway_reference)
        return self.on_gateway_result(attempt.id, result)

    def poll(self, attempt_id: str) -> ReconcileResult:
        """
        Ask the gateway for the status of a pending attempt.

        An unreachable gateway leaves the attempt pending for the next poll.

        Raises:
            NotFound: No attempt with this id
        """
        attempt = self.store.get_attempt(attempt_id)
        if attempt.is_terminal:
            return ReconcileResult(
                attempt_id,
                OUTCOME_ALREADY_COMPLETED if attempt.status == COMPLETED else OUTCOME_IGNORED,
                attempt.transaction_id,
            )
        if not attempt.gateway_reference:
            raise InvalidState(f"Payment {attempt_id} has no gateway reference to poll")

        gateway = self._gateway(attempt.gateway)
        try:
            result = gateway.query_status(attempt.gateway_reference)
        except (requests.exceptions.RequestException, KeyError, ValueError) as e:
            logger.warning(f"Status query for payment {attempt_id} failed: {e}")
            return ReconcileResult(attempt_id, OUTCOME_UNREACHABLE)

        return self.on_gateway_result(attempt_id, result)

    def poll_pending(self) -> Dict[str, int]:
        """Poll every pending attempt once. Returns counts per outcome."""
        counts: Dict[str, int] = {}
        for attempt in self.store.list_attempts(status=PENDING):
            if not attempt.gateway_reference:
                continue
            try:
                outcome = self.poll(attempt.id).outcome
            except Exception as e:
                logger.error(f"Polling payment {attempt.id} failed: {e}")
                outcome = 'error'
            counts[outcome] = counts.get(outcome, 0) + 1
        return counts

"""
Mobile money gateways.

Each gateway maps its own status codes onto pending/completed/failed at this
boundary; nothing past here sees a gateway-specific code. Credentials and
endpoints come from the environment (.env) via python-decouple.
"""

import base64
import logging
import re
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

import requests
from decouple import config as env_config

from rentledger.billing.errors import MalformedCallback
from rentledger.common.http_client import HTTPClient


logger = logging.getLogger(__name__)


PENDING = 'pending'
COMPLETED = 'completed'
FAILED = 'failed'

MTN_STATUS_MAP = {
    'SUCCESSFUL': COMPLETED,
    'FAILED': FAILED,
    'PENDING': PENDING,
}

# TS success, TF failed, TR reversed, TIP in progress, TA ambiguous
AIRTEL_STATUS_MAP = {
    'TS': COMPLETED,
    'TF': FAILED,
    'TR': FAILED,
    'TIP': PENDING,
    'TA': PENDING,
}


@dataclass
class InitiationResult:
    """Gateway answer to a collection request."""
    accepted: bool
    gateway_reference: Optional[str] = None
    reason: Optional[str] = None


@dataclass
class GatewayResult:
    """A status report about one gateway transaction, already mapped."""
    gateway: str
    gateway_reference: str
    status: str
    raw_status: Optional[str] = None
    amount: Optional[int] = None
    external_reference: Optional[str] = None
    reason: Optional[str] = None
    payload: Dict[str, Any] = field(default_factory=dict)


def _parse_amount(value) -> Optional[int]:
    if value in (None, ''):
        return None
    try:
        return int(float(value))
    except (TypeError, ValueError):
        return None


class Gateway(ABC):
    """
    Payment gateway contract.

    initiate() and query_status() must return within the configured timeout;
    a gateway that cannot be reached surfaces as a rejected initiation.
    """

    name: str = ''
    display_name: str = ''
    status_map: Dict[str, str] = {}

    def map_status(self, raw_status: Optional[str]) -> str:
        """Unknown or missing codes stay pending."""
        return self.status_map.get((raw_status or '').upper(), PENDING)

    def payment_description(self, external_reference: Optional[str]) -> str:
        return f"Payment via {self.display_name} ({external_reference})"

    @abstractmethod
    def initiate(self, amount: int, payer_handle: str, correlation_id: str, message: str = 'Rent Payment') -> InitiationResult:
        ...

    @abstractmethod
    def query_status(self, gateway_reference: str) -> GatewayResult:
        ...

    @abstractmethod
    def parse_callback(self, payload: Dict[str, Any]) -> GatewayResult:
        """
        Raises:
            MalformedCallback: Correlation fields missing
        """
        ...

    @abstractmethod
    def normalize_payer(self, payer_handle: str) -> str:
        """
        Raises:
            ValueError: Not a number this gateway serves
        """
        ...


class MtnMomoGateway(Gateway):
    """MTN Mobile Money collection API (Uganda)."""

    name = 'mtn'
    display_name = 'MTN Mobile Money'
    status_map = MTN_STATUS_MAP

    def __init__(
        self,
        api_url: Optional[str] = None,
        user_id: Optional[str] = None,
        api_key: Optional[str] = None,
        subscription_key: Optional[str] = None,
        target_environment: Optional[str] = None,
        currency: str = 'UGX',
        timeout: int = 30,
        http_client: Optional[HTTPClient] = None,
    ):
        self.api_url = (api_url or env_config('MTN_API_URL', default='')).rstrip('/')
        self.user_id = user_id or env_config('MTN_COLLECTION_USER_ID', default='')
        self.api_key = api_key or env_config('MTN_COLLECTION_API_KEY', default='')
        self.subscription_key = subscription_key or env_config('MTN_COLLECTION_PRIMARY_KEY', default='')
        self.target_environment = target_environment or env_config('MTN_TARGET_ENVIRONMENT', default='sandbox')
        self.currency = currency
        self.http = http_client or HTTPClient(default_timeout=timeout)

    def _access_token(self) -> str:
        credentials = base64.b64encode(f"{self.user_id}:{self.api_key}".encode()).decode()
        response = self.http.post(
            f"{self.api_url}/collection/token/",
            headers={
                'Authorization': f"Basic {credentials}",
                'Ocp-Apim-Subscription-Key': self.subscription_key,
            },
        )
        return response.json()['access_token']

    def _headers(self, token: str) -> Dict[str, str]:
        return {
            'Authorization': f"Bearer {token}",
            'X-Target-Environment': self.target_environment,
            'Ocp-Apim-Subscription-Key': self.subscription_key,
        }

    def normalize_payer(self, payer_handle: str) -> str:
        """0771234567 / +256771234567 -> 256771234567"""
        cleaned = re.sub(r'\D', '', payer_handle or '')
        if cleaned.startswith('0'):
            cleaned = '256' + cleaned[1:]
        elif not cleaned.startswith('256'):
            cleaned = '256' + cleaned

        if len(cleaned) != 12 or cleaned[3:5] not in ('76', '77', '78'):
            raise ValueError(f"Invalid MTN phone number: {payer_handle}")
        return cleaned

    def initiate(self, amount: int, payer_handle: str, correlation_id: str, message: str = 'Rent Payment') -> InitiationResult:
        reference_id = str(uuid.uuid4())
        body = {
            'amount': str(amount),
            'currency': self.currency,
            'externalId': correlation_id,
            'payer': {'partyIdType': 'MSISDN', 'partyId': payer_handle},
            'payerMessage': message,
            'payeeNote': message,
        }
        try:
            token = self._access_token()
            headers = self._headers(token)
            headers['X-Reference-Id'] = reference_id
            self.http.post(f"{self.api_url}/collection/v1_0/requesttopay", headers=headers, json=body)
        except requests.exceptions.Timeout:
            return InitiationResult(accepted=False, reason='MTN request timed out')
        except (requests.exceptions.RequestException, KeyError, ValueError) as e:
            return InitiationResult(accepted=False, reason=f"MTN request to pay failed: {e}")

        return InitiationResult(accepted=True, gateway_reference=reference_id)

    def query_status(self, gateway_reference: str) -> GatewayResult:
        """
        Raises:
            requests.exceptions.RequestException: Gateway unreachable or error response
        """
        token = self._access_token()
        response = self.http.get(
            f"{self.api_url}/collection/v1_0/requesttopay/{gateway_reference}",
            headers=self._headers(token),
        )
        data = response.json()
        return GatewayResult(
            gateway=self.name,
            gateway_reference=gateway_reference,
            status=self.map_status(data.get('status')),
            raw_status=data.get('status'),
            amount=_parse_amount(data.get('amount')),
            external_reference=data.get('financialTransactionId'),
            reason=data.get('reason'),
            payload=data,
        )

    def parse_callback(self, payload: Dict[str, Any]) -> GatewayResult:
        if not isinstance(payload, dict):
            raise MalformedCallback("MTN callback payload is not an object")
        reference_id = payload.get('referenceId')
        if not reference_id:
            raise MalformedCallback("MTN callback missing referenceId")
        if not payload.get('status'):
            raise MalformedCallback(f"MTN callback {reference_id} missing status")

        return GatewayResult(
            gateway=self.name,
            gateway_reference=str(reference_id),
            status=self.map_status(payload['status']),
            raw_status=payload['status'],
            amount=_parse_amount(payload.get('amount')),
            external_reference=payload.get('financialTransactionId'),
            reason=payload.get('reason'),
            payload=payload,
        )


class AirtelMoneyGateway(Gateway):
    """Airtel Money collection API (Uganda)."""

    name = 'airtel'
    display_name = 'Airtel Money'
    status_map = AIRTEL_STATUS_MAP

    def __init__(
        self,
        api_url: Optional[str] = None,
        client_id: Optional[str] = None,
        client_secret: Optional[str] = None,
        country: str = 'UG',
        currency: str = 'UGX',
        timeout: int = 30,
        http_client: Optional[HTTPClient] = None,
    ):
        self.api_url = (api_url or env_config('AIRTEL_API_URL', default='')).rstrip('/')
        self.client_id = client_id or env_config('AIRTEL_CLIENT_ID', default='')
        self.client_secret = client_secret or env_config('AIRTEL_CLIENT_SECRET', default='')
        self.country = country
        self.currency = currency
        self.http = http_client or HTTPClient(default_timeout=timeout)

    def _access_token(self) -> str:
        response = self.http.post(
            f"{self.api_url}/auth/oauth2/token",
            json={
                'client_id': self.client_id,
                'client_secret': self.client_secret,
                'grant_type': 'client_credentials',
            },
        )
        return response.json()['access_token']

    def _headers(self, token: str) -> Dict[str, str]:
        return {
            'Authorization': f"Bearer {token}",
            'X-Country': self.country,
            'X-Currency': self.currency,
        }

    def normalize_payer(self, payer_handle: str) -> str:
        """0701234567 / 256701234567 -> 701234567"""
        cleaned = re.sub(r'\D', '', payer_handle or '')
        if cleaned.startswith('256'):
            cleaned = cleaned[3:]
        if cleaned.startswith('0'):
            cleaned = cleaned[1:]

        if len(cleaned) != 9 or cleaned[:2] not in ('70', '75'):
            raise ValueError(f"Invalid Airtel phone number: {payer_handle}")
        return cleaned

    def initiate(self, amount: int, payer_handle: str, correlation_id: str, message: str = 'Rent Payment') -> InitiationResult:
        body = {
            'reference': message,
            'subscriber': {'country': self.country, 'currency': self.currency, 'msisdn': payer_handle},
            'transaction': {
                'amount': amount,
                'country': self.country,
                'currency': self.currency,
                'id': correlation_id,
            },
        }
        try:
            token = self._access_token()
            response = self.http.post(
                f"{self.api_url}/merchant/v1/payments/",
                headers=self._headers(token),
                json=body,
            )
            data = response.json()
        except requests.exceptions.Timeout:
            return InitiationResult(accepted=False, reason='Airtel request timed out')
        except (requests.exceptions.RequestException, KeyError, ValueError) as e:
            return InitiationResult(accepted=False, reason=f"Airtel request to pay failed: {e}")

        status = data.get('status') or {}
        if str(status.get('code')) != '200':
            return InitiationResult(accepted=False, reason=status.get('message') or 'Payment request failed')

        transaction = (data.get('data') or {}).get('transaction') or {}
        return InitiationResult(accepted=True, gateway_reference=transaction.get('id') or correlation_id)

    def query_status(self, gateway_reference: str) -> GatewayResult:
        """
        Raises:
            requests.exceptions.RequestException: Gateway unreachable or error response
        """
        token = self._access_token()
        response = self.http.get(
            f"{self.api_url}/standard/v1/payments/{gateway_reference}",
            headers=self._headers(token),
        )
        data = response.json()
        transaction = (data.get('data') or {}).get('transaction') or {}
        raw_status = transaction.get('status') or 'TIP'
        return GatewayResult(
            gateway=self.name,
            gateway_reference=gateway_reference,
            status=self.map_status(raw_status),
            raw_status=raw_status,
            amount=_parse_amount(transaction.get('amount')),
            external_reference=transaction.get('airtel_money_id'),
            reason=transaction.get('message'),
            payload=data,
        )

    def parse_callback(self, payload: Dict[str, Any]) -> GatewayResult:
        if not isinstance(payload, dict):
            raise MalformedCallback("Airtel callback payload is not an object")
        transaction = payload.get('transaction')
        if not isinstance(transaction, dict) or not transaction.get('id'):
            raise MalformedCallback("Airtel callback missing transaction id")
        if not transaction.get('status'):
            raise MalformedCallback(f"Airtel callback {transaction['id']} missing status")

        return GatewayResult(
            gateway=self.name,
            gateway_reference=str(transaction['id']),
            status=self.map_status(transaction['status']),
            raw_status=transaction['status'],
            amount=_parse_amount(transaction.get('amount')),
            external_reference=transaction.get('airtel_money_id'),
            reason=transaction.get('message'),
            payload=payload,
        )


GATEWAY_CLASSES = {
    MtnMomoGateway.name: MtnMomoGateway,
    AirtelMoneyGateway.name: AirtelMoneyGateway,
}


def build_gateways(timeout: int = 30, currency: str = 'UGX') -> Dict[str, Gateway]:
    """Both gateways configured from the environment."""
    return {name: cls(timeout=timeout, currency=currency) for name, cls in GATEWAY_CLASSES.items()}

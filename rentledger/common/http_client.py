"""
HTTP client for payment gateway APIs with connection pooling, bounded
timeouts and retry logic.
"""

import logging
from typing import Dict, List, Optional, Any
import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry


logger = logging.getLogger(__name__)


class HTTPClient:
    """
    HTTP client with connection pooling and automatic retry logic.

    Features:
    - Connection pooling
    - Retry with exponential backoff for idempotent methods only
      (a retried payment request could charge a tenant twice)
    - Every request carries a timeout
    """

    def __init__(
        self,
        pool_connections: int = 4,
        pool_maxsize: int = 10,
        total_retries: int = 3,
        backoff_factor: float = 1.0,
        status_forcelist: Optional[List[int]] = None,
        allowed_methods: Optional[List[str]] = None,
        default_timeout: int = 30
    ):
        """
        Initialize HTTP client with connection pooling and retry logic.

        Args:
            pool_connections: Number of connection pools to cache
            pool_maxsize: Maximum number of connections per pool
            total_retries: Total number of retry attempts
            backoff_factor: Backoff factor for retries (delay = backoff_factor * (2 ** retry_count))
            status_forcelist: HTTP status codes to retry on
            allowed_methods: HTTP methods to retry (default: GET and HEAD)
            default_timeout: Default timeout in seconds
        """
        self.default_timeout = default_timeout
        self.session = requests.Session()

        retry_strategy = Retry(
            total=total_retries,
            backoff_factor=backoff_factor,
            status_forcelist=status_forcelist or [429, 500, 502, 503, 504],
            allowed_methods=allowed_methods or ["GET", "HEAD"],
            raise_on_status=False  # Don't raise exception, let caller handle
        )

        adapter = HTTPAdapter(
            max_retries=retry_strategy,
            pool_connections=pool_connections,
            pool_maxsize=pool_maxsize,
        )

        # Mount adapter for both HTTP and HTTPS
        self.session.mount("https://", adapter)
        self.session.mount("http://", adapter)

        logger.debug(
            f"HTTP client initialized: retries={total_retries}, timeout={self.default_timeout}s"
        )

    def request(
        self,
        method: str,
        url: str,
        headers: Optional[Dict[str, str]] = None,
        json: Optional[Any] = None,
        timeout: Optional[int] = None,
        **kwargs
    ) -> requests.Response:
        """
        Make HTTP request with retry logic.

        Raises:
            requests.exceptions.Timeout: No response within the timeout
            requests.exceptions.RequestException: On request failure or 4xx/5xx
        """
        timeout = timeout or self.default_timeout
        headers = headers or {}

        try:
            response = self.session.request(
                method=method.upper(),
                url=url,
                headers=headers,
                json=json,
                timeout=timeout,
                **kwargs
            )

            logger.debug(f"{method.upper()} {url} -> {response.status_code}")

            # Raise for 4xx/5xx status codes
            response.raise_for_status()

            return response

        except requests.exceptions.Timeout:
            logger.error(f"Request timeout after {timeout}s: {method.upper()} {url}")
            raise

        except requests.exceptions.RequestException as e:
            logger.error(f"Request failed: {method.upper()} {url} - {e}")
            raise

    def get(self, url: str, **kwargs) -> requests.Response:
        return self.request("GET", url, **kwargs)

    def post(self, url: str, **kwargs) -> requests.Response:
        return self.request("POST", url, **kwargs)

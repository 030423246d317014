"""
Exchange rate provider client (exchangerate-api compatible REST API).
Fetches the full rate table anchored at a base currency, with retries.
"""
from typing import Dict, Optional

import requests
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from core.config import get_settings
from core.exceptions import ExchangeRateError
from core.logger import setup_logger

logger = setup_logger(__name__)


class TransientProviderError(Exception):
    """Provider answered with a status worth retrying (429 or 5xx)."""


RETRYABLE_ERRORS = (requests.exceptions.Timeout, requests.exceptions.ConnectionError, TransientProviderError)


class ExchangeRateProvider:
    """Wrapper for the exchange rate REST API with retry logic."""

    def __init__(
        self,
        api_url: Optional[str] = None,
        api_key: Optional[str] = None,
        timeout: Optional[int] = None,
        session: Optional[requests.Session] = None,
    ):
        settings = get_settings()
        self.api_url = (api_url or settings.exchange_rate_api_url).rstrip("/")
        self.api_key = api_key if api_key is not None else settings.exchange_rate_api_key
        self.timeout = timeout or settings.exchange_rate_timeout
        self.session = session or requests.Session()

    def fetch_rates(self, base_currency: str) -> Dict[str, float]:
        """
        Fetch conversion rates for one unit of ``base_currency``.

        Args:
            base_currency: ISO code the table is anchored at

        Returns:
            Mapping of currency code -> units per one base unit

        Raises:
            ExchangeRateError: If the provider is not configured, unreachable,
                or returns an unexpected body
        """
        if not self.api_key:
            raise ExchangeRateError(
                "EXCHANGE_RATE_API_KEY is not configured",
                details={"required_key": "EXCHANGE_RATE_API_KEY"}
            )

        url = f"{self.api_url}/{self.api_key}/latest/{base_currency}"
        try:
            payload = self._get_json(url)
        except RETRYABLE_ERRORS as e:
            logger.error(f"Rate provider unavailable for base {base_currency}: {e}")
            raise ExchangeRateError(
                "Exchange rate provider unavailable",
                details={"base_currency": base_currency, "error": str(e)}
            )
        except requests.exceptions.HTTPError as e:
            status_code = getattr(e.response, "status_code", None)
            logger.error(f"Rate provider HTTP error for base {base_currency}: {status_code}")
            raise ExchangeRateError(
                f"Exchange rate provider returned HTTP {status_code}",
                details={"base_currency": base_currency, "status_code": status_code}
            )
        except ValueError as e:
            logger.error(f"Rate provider returned invalid JSON: {e}")
            raise ExchangeRateError(
                "Exchange rate provider returned invalid JSON",
                details={"base_currency": base_currency}
            )
        except requests.exceptions.RequestException as e:
            logger.error(f"Rate provider request failed: {e}")
            raise ExchangeRateError(
                "Exchange rate request failed",
                details={"base_currency": base_currency, "error": str(e)}
            )

        rates = payload.get("conversion_rates") if isinstance(payload, dict) else None
        if not isinstance(rates, dict):
            raise ExchangeRateError(
                "Exchange rate response has no conversion_rates",
                details={"base_currency": base_currency, "result": payload.get("result") if isinstance(payload, dict) else None}
            )

        logger.debug(f"Fetched {len(rates)} rates for base {base_currency}")
        return rates

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=8),
        retry=retry_if_exception_type(RETRYABLE_ERRORS),
        reraise=True,
    )
    def _get_json(self, url: str) -> Dict:
        response = self.session.get(url, timeout=self.timeout)
        if response.status_code == 429 or response.status_code >= 500:
            raise TransientProviderError(f"HTTP {response.status_code}")
        response.raise_for_status()
        return response.json()


# Singleton provider instance
_provider: Optional[ExchangeRateProvider] = None


def get_rate_provider() -> ExchangeRateProvider:
    """
    Get or create the exchange rate provider singleton.

    Returns:
        Provider client
    """
    global _provider
    if _provider is None:
        _provider = ExchangeRateProvider()
    return _provider


def reset_rate_provider() -> None:
    """Drop the cached provider (useful for testing)."""
    global _provider
    _provider = None

"""
Exchange rate lookup

Rates are expressed as Bs per 1 unit of the given currency and are read
once per booking, inside the booking transaction.
"""

import logging
from abc import ABC, abstractmethod
from decimal import Decimal, InvalidOperation

import httpx

from ..config import RATES_API_URL, RATES_FIXED, RATES_TIMEOUT_SECONDS
from ..errors import TransientDependencyError

logger = logging.getLogger(__name__)


class RateSource(ABC):
    """Interface for exchange rate providers"""

    @abstractmethod
    def get_rate(self, currency: str) -> Decimal:
        """Bs per 1 unit of ``currency``; raises TransientDependencyError when unavailable"""


class FixedRateSource(RateSource):
    """Rates from configuration, e.g. ``USD=36.5,EUR=39.1``"""

    def __init__(self, rates: dict[str, Decimal]):
        self.rates = {code.upper(): Decimal(str(rate)) for code, rate in rates.items()}

    @classmethod
    def from_string(cls, raw: str) -> "FixedRateSource":
        rates = {}
        for pair in raw.split(","):
            if not pair.strip():
                continue
            code, _, rate = pair.partition("=")
            rates[code.strip()] = Decimal(rate.strip())
        return cls(rates)

    def get_rate(self, currency: str) -> Decimal:
        code = (currency or "USD").upper()
        if code not in self.rates:
            raise TransientDependencyError(f"No hay tasa de cambio configurada para {code}")
        return self.rates[code]


class HttpRateSource(RateSource):
    """Reads the latest rate from ``GET {base_url}/rates/{CODE}``"""

    def __init__(self, base_url: str, timeout: float = RATES_TIMEOUT_SECONDS, transport=None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.transport = transport

    def get_rate(self, currency: str) -> Decimal:
        code = (currency or "USD").upper()
        try:
            with httpx.Client(timeout=self.timeout, transport=self.transport) as client:
                response = client.get(f"{self.base_url}/rates/{code}")
                response.raise_for_status()
                data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"❌ Exchange rate lookup failed for {code}: {e}")
            raise TransientDependencyError("No se pudo obtener la tasa de cambio") from e

        try:
            rate = Decimal(str(data["rate"]))
        except (KeyError, TypeError, InvalidOperation) as e:
            logger.error(f"❌ Malformed exchange rate response for {code}: {data}")
            raise TransientDependencyError("No se pudo obtener la tasa de cambio") from e

        if rate <= 0:
            raise TransientDependencyError(f"Tasa de cambio inválida para {code}")

        logger.info(f"💱 Rate {code}: {rate}")
        return rate


def get_rate_source() -> RateSource:
    """Dependency provider for the configured rate source"""
    if RATES_FIXED:
        return FixedRateSource.from_string(RATES_FIXED)
    if RATES_API_URL:
        return HttpRateSource(RATES_API_URL)
    logger.warning("⚠️ No exchange rate source configured - only USD at 1.0 is available")
    return FixedRateSource({"USD": Decimal("1")})

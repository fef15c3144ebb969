from decimal import Decimal

import httpx
import pytest

from consultorio.email_service import get_email_sender
from consultorio.errors import TransientDependencyError
from consultorio.services import exchange_rates
from consultorio.services.exchange_rates import FixedRateSource, HttpRateSource, RateSource


def test_rate_source_is_abstract():
    with pytest.raises(TypeError):
        RateSource()


def test_fixed_rates_from_config_string():
    source = FixedRateSource.from_string("USD=36.5, eur=39.1,")

    assert source.get_rate("usd") == Decimal("36.5")
    assert source.get_rate("EUR") == Decimal("39.1")
    with pytest.raises(TransientDependencyError):
        source.get_rate("GBP")


def test_http_rate_source_reads_rate():
    def handler(request):
        assert request.url.path == "/rates/USD"
        return httpx.Response(200, json={"rate": "36.75"})

    source = HttpRateSource("https://rates.test/", transport=httpx.MockTransport(handler))

    assert source.get_rate("usd") == Decimal("36.75")


@pytest.mark.parametrize(
    "response",
    [
        httpx.Response(500, json={"error": "down"}),
        httpx.Response(200, json={"value": 1}),
        httpx.Response(200, json={"rate": 0}),
    ],
)
def test_http_rate_source_failures_are_transient(response):
    source = HttpRateSource("https://rates.test", transport=httpx.MockTransport(lambda request: response))

    with pytest.raises(TransientDependencyError):
        source.get_rate("USD")


def test_provider_follows_current_configuration(monkeypatch):
    monkeypatch.setattr(exchange_rates, "RATES_FIXED", "USD=10")
    assert exchange_rates.get_rate_source().get_rate("USD") == Decimal("10")

    monkeypatch.setattr(exchange_rates, "RATES_FIXED", "USD=12")
    assert exchange_rates.get_rate_source().get_rate("USD") == Decimal("12")


def test_providers_build_fresh_clients():
    assert get_email_sender() is not get_email_sender()

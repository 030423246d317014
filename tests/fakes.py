"""
In-memory stand-ins for the rate provider and requests sessions.
"""
import requests

from core.exceptions import ExchangeRateError


class FakeRateProvider:
    """Rate tables keyed by base currency; records every fetch."""

    def __init__(self, tables=None):
        self.tables = tables or {}
        self.calls = []

    def fetch_rates(self, base_currency):
        self.calls.append(base_currency)
        if base_currency not in self.tables:
            raise ExchangeRateError("Exchange rate provider unavailable", details={"base_currency": base_currency})
        return self.tables[base_currency]


class FakeResponse:
    def __init__(self, status_code=200, payload=None, text=""):
        self.status_code = status_code
        self._payload = payload
        self.text = text

    @property
    def ok(self):
        return self.status_code < 400

    def json(self):
        if self._payload is None:
            raise ValueError("No JSON object could be decoded")
        return self._payload

    def raise_for_status(self):
        if not self.ok:
            raise requests.exceptions.HTTPError(f"HTTP {self.status_code}", response=self)


class FakeSession:
    """Stands in for requests.Session; replays queued responses or errors."""

    def __init__(self, responses=None):
        self.responses = list(responses or [])
        self.requests = []

    def _next(self, method, url, **kwargs):
        self.requests.append({"method": method, "url": url, **kwargs})
        response = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        if isinstance(response, Exception):
            raise response
        return response

    def get(self, url, **kwargs):
        return self._next("GET", url, **kwargs)

    def post(self, url, **kwargs):
        return self._next("POST", url, **kwargs)


"""Provider-to-store currency rate with an owned, time-stamped cache entry."""
import logging
import threading
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from typing import Optional

import requests

from ..utils.clock import utcnow


@dataclass(frozen=True)
class RateQuote:
    rate: float
    base: str
    target: str
    fetched_at: Optional[datetime]
    cached: bool = False
    stale: bool = False

    def to_dict(self) -> dict:
        return {
            "rate": self.rate,
            "from": self.base,
            "to": self.target,
            "fetchedAt": self.fetched_at.isoformat() + "Z" if self.fetched_at else None,
            "cached": self.cached,
            "stale": self.stale,
        }


class ExchangeRateCache:
    """Serve the rate from cache while younger than the TTL.

    When a refresh fails the last good entry is served marked ``stale``; the
    fallback rate is used only if nothing was ever fetched.
    """

    def __init__(
        self,
        url: str,
        *,
        base: str = "USD",
        target: str = "ZAR",
        ttl_seconds: int = 3600,
        fallback_rate: float = 18.5,
        timeout: int = 10,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.url = url
        self.base = base
        self.target = target
        self.ttl = timedelta(seconds=ttl_seconds)
        self.fallback_rate = fallback_rate
        self.timeout = timeout
        self._http = session or requests.Session()
        self._entry: Optional[RateQuote] = None
        self._lock = threading.Lock()
        self.logger = logging.getLogger(__name__)

    @classmethod
    def from_config(cls, config) -> "ExchangeRateCache":
        return cls(
            config.exchange_rate_url,
            base=config.provider_currency,
            target=config.store_currency,
            ttl_seconds=config.exchange_rate_ttl_seconds,
            fallback_rate=config.exchange_rate_fallback,
        )

    def _fetch(self) -> float:
        response = self._http.get(self.url, timeout=self.timeout)
        response.raise_for_status()
        rate = (response.json().get("rates") or {}).get(self.target)
        if not rate:
            raise ValueError(f"{self.target} rate not found in response")
        return float(rate)

    def get_rate(self, now: Optional[datetime] = None) -> RateQuote:
        now = now or utcnow()
        with self._lock:
            entry = self._entry
            if entry is not None and now - entry.fetched_at < self.ttl:
                return replace(entry, cached=True)
            try:
                rate = self._fetch()
            except (requests.RequestException, ValueError) as exc:
                self.logger.warning("Exchange rate refresh failed: %s", exc)
                if entry is not None:
                    return replace(entry, cached=True, stale=True)
                return RateQuote(self.fallback_rate, self.base, self.target, None, cached=False, stale=True)
            self._entry = RateQuote(rate, self.base, self.target, now)
            return self._entry

"""Postal address to GeoPoint lookups for donors and facilities.

Lookups consult the static table in ``GEOCODER_STATIC_FIXTURES`` first, then
an in-process cache of earlier remote answers, and only then Nominatim.
Remote calls are rate limited and can be switched off entirely with
``GEOCODER_ALLOW_REMOTE = False``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from functools import lru_cache
from typing import Dict, Optional, Tuple

from django.conf import settings
from geopy.exc import GeopyError
from geopy.extra.rate_limiter import RateLimiter
from geopy.geocoders import Nominatim

LOGGER = logging.getLogger(__name__)

_SIX_PLACES = Decimal("0.000001")


@dataclass(frozen=True)
class GeocodeResult:
	latitude: Decimal
	longitude: Decimal
	provider: str = "fixture"
	accuracy: Optional[str] = None


def to_coordinate(value) -> Decimal:
	"""Round to the six decimal places the coordinate columns store."""

	return Decimal(str(value)).quantize(_SIX_PLACES, rounding=ROUND_HALF_UP)


def compose_address(*parts: Optional[str]) -> str:
	return ", ".join(part.strip() for part in parts if part and part.strip())


class Geocoder:
	def __init__(self):
		self._remembered: Dict[str, GeocodeResult] = {}

	@staticmethod
	def _key(address: str) -> str:
		return " ".join(address.split()).lower()

	def _from_fixtures(self, key: str) -> Optional[GeocodeResult]:
		for name, pair in (getattr(settings, "GEOCODER_STATIC_FIXTURES", None) or {}).items():
			if self._key(name) == key and len(pair) == 2:
				return GeocodeResult(to_coordinate(pair[0]), to_coordinate(pair[1]), provider="fixture", accuracy="exact")
		return None

	def _from_nominatim(self, address: str, country_bias: Optional[str]) -> Optional[GeocodeResult]:
		try:
			location = _nominatim()(query=address, country_codes=country_bias, addressdetails=True)
		except GeopyError as exc:
			LOGGER.warning("Nominatim lookup failed for '%s': %s", address, exc)
			return None
		if location is None:
			LOGGER.info("Nominatim has no match for '%s'", address)
			return None
		raw = location.raw if isinstance(location.raw, dict) else {}
		return GeocodeResult(
			to_coordinate(location.latitude),
			to_coordinate(location.longitude),
			provider="nominatim",
			accuracy=raw.get("type"),
		)

	def lookup(self, address: str, *, country_bias: Optional[str] = None, allow_remote: bool = True) -> Optional[GeocodeResult]:
		if not address or not address.strip():
			return None
		key = self._key(address)

		result = self._from_fixtures(key) or self._remembered.get(key)
		if result is not None or not allow_remote:
			return result

		result = self._from_nominatim(address.strip(), country_bias)
		if result is not None:
			self._remembered[key] = result
		return result


@lru_cache(maxsize=1)
def _nominatim():
	client = Nominatim(
		user_agent=getattr(settings, "GEOCODER_USER_AGENT", "emresource-geocoder"),
		timeout=getattr(settings, "GEOCODER_TIMEOUT", 10),
	)
	return RateLimiter(client.geocode, min_delay_seconds=getattr(settings, "GEOCODER_MIN_DELAY_SECONDS", 1.0), swallow_exceptions=False)


_default = Geocoder()


def geocode_address(address: str, *, country_bias: Optional[str] = None, allow_remote: bool = True) -> Optional[GeocodeResult]:
	return _default.lookup(address, country_bias=country_bias, allow_remote=allow_remote)


__all__: Tuple[str, ...] = ("GeocodeResult", "Geocoder", "compose_address", "geocode_address", "to_coordinate")

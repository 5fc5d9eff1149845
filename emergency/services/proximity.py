"""Radius search over models that carry ``latitude``/``longitude`` columns.

Candidates are pre-filtered with a bounding box on the composite
(latitude, longitude) B-tree index, which keeps inserts, moves and deletes at
index-maintenance cost. The exact great-circle distance is then computed for
the surviving rows only.
"""

from __future__ import annotations

import logging
import math
import time
from dataclasses import dataclass
from decimal import ROUND_CEILING, ROUND_FLOOR, Decimal, InvalidOperation
from typing import Any, Callable, Generic, List, Optional, Sequence, Tuple, TypeVar

from django.conf import settings
from django.db import OperationalError
from django.db.models import Q, QuerySet

from emresource.exceptions import Transient, ValidationError

LOGGER = logging.getLogger(__name__)

# Mean Earth radius (IUGG).
EARTH_RADIUS_METERS = 6371008.8

_COORDINATE_PLACES = Decimal("0.000001")

T = TypeVar("T")


@dataclass(frozen=True)
class GeoPoint:
	"""A (longitude, latitude) pair in decimal degrees."""

	longitude: float
	latitude: float

	def __post_init__(self):
		for label, value, bound in (("longitude", self.longitude, 180), ("latitude", self.latitude, 90)):
			if not isinstance(value, (int, float, Decimal)) or not math.isfinite(float(value)):
				raise ValidationError(errors={label: [f"{label.capitalize()} must be a number"]})
			if not -bound <= float(value) <= bound:
				raise ValidationError(errors={label: [f"{label.capitalize()} must be between -{bound} and {bound}"]})
		object.__setattr__(self, "longitude", float(self.longitude))
		object.__setattr__(self, "latitude", float(self.latitude))

	@classmethod
	def parse(cls, latitude: Any, longitude: Any) -> "GeoPoint":
		"""Build a point from untrusted input such as query-string values."""

		if latitude in (None, "") or longitude in (None, ""):
			raise ValidationError("Latitude and longitude are required")
		try:
			lat = float(latitude)
			lng = float(longitude)
		except (TypeError, ValueError) as exc:
			raise ValidationError("Latitude and longitude must be numbers") from exc
		return cls(longitude=lng, latitude=lat)

	@classmethod
	def of(cls, instance: Any) -> Optional["GeoPoint"]:
		if instance.latitude is None or instance.longitude is None:
			return None
		return cls(longitude=float(instance.longitude), latitude=float(instance.latitude))

	@property
	def coordinates(self) -> List[float]:
		return [self.longitude, self.latitude]


def haversine_meters(a: GeoPoint, b: GeoPoint) -> float:
	phi1, phi2 = math.radians(a.latitude), math.radians(b.latitude)
	dphi = math.radians(b.latitude - a.latitude)
	dlambda = math.radians(b.longitude - a.longitude)
	h = math.sin(dphi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(dlambda / 2) ** 2
	return 2 * EARTH_RADIUS_METERS * math.asin(min(1.0, math.sqrt(h)))


def bounding_box(center: GeoPoint, radius_meters: float) -> Tuple[Tuple[float, float], List[Tuple[float, float]]]:
	"""Latitude band and longitude ranges that contain every point within the radius.

	Longitude ranges are split in two when the box crosses the antimeridian and
	cover the whole circle when the band reaches a pole.
	"""

	angular = radius_meters / EARTH_RADIUS_METERS
	lat_delta = math.degrees(angular)
	lat_min = center.latitude - lat_delta
	lat_max = center.latitude + lat_delta

	if lat_min <= -90 or lat_max >= 90 or angular >= math.pi / 2:
		return (max(lat_min, -90.0), min(lat_max, 90.0)), [(-180.0, 180.0)]

	lng_delta = math.degrees(math.asin(math.sin(angular) / math.cos(math.radians(center.latitude))))
	lng_min = center.longitude - lng_delta
	lng_max = center.longitude + lng_delta

	if lng_min < -180:
		return (lat_min, lat_max), [(lng_min + 360, 180.0), (-180.0, lng_max)]
	if lng_max > 180:
		return (lat_min, lat_max), [(lng_min, 180.0), (-180.0, lng_max - 360)]
	return (lat_min, lat_max), [(lng_min, lng_max)]


def clamp_radius(raw: Any, default: Optional[float] = None, *, maximum: Optional[float] = None) -> float:
	"""Parse a client-supplied radius in meters, clamping it to the server maximum."""

	if maximum is None:
		maximum = float(getattr(settings, "PROXIMITY_MAX_RADIUS_METERS", 100_000))
	if raw in (None, ""):
		if default is None:
			default = float(getattr(settings, "PROXIMITY_DEFAULT_RADIUS_METERS", 50_000))
		return min(float(default), maximum)

	try:
		radius = float(raw)
	except (TypeError, ValueError) as exc:
		raise ValidationError(errors={"radius": ["Radius must be a number of meters"]}) from exc
	if not math.isfinite(radius) or radius <= 0:
		raise ValidationError(errors={"radius": ["Radius must be a positive number of meters"]})
	if radius > maximum:
		LOGGER.warning("Clamping requested radius %.0fm to %.0fm", radius, maximum)
		return maximum
	return radius


def _bound(value: float, rounding: str) -> Decimal:
	return Decimal(repr(value)).quantize(_COORDINATE_PLACES, rounding=rounding)


@dataclass(frozen=True)
class Match(Generic[T]):
	obj: T
	point: GeoPoint
	distance_meters: float

	@property
	def distance_km(self) -> float:
		return self.distance_meters / 1000.0


class ProximityIndex:
	"""Radius queries over one model's coordinate columns.

	``query`` is read-only and retried on store errors; ``move`` and ``remove``
	are single UPDATE statements and are never retried.
	"""

	def __init__(
		self,
		queryset: QuerySet,
		*,
		lat_field: str = "latitude",
		lng_field: str = "longitude",
		retries: Optional[int] = None,
		backoff_seconds: float = 0.05,
		sleep: Callable[[float], None] = time.sleep,
	):
		self.queryset = queryset
		self.lat_field = lat_field
		self.lng_field = lng_field
		if retries is None:
			retries = int(getattr(settings, "PROXIMITY_READ_RETRIES", 2))
		self.retries = max(retries, 0)
		self.backoff_seconds = backoff_seconds
		self.sleep = sleep

	def _box_filter(self, center: GeoPoint, radius_meters: float) -> Q:
		(lat_min, lat_max), lng_ranges = bounding_box(center, radius_meters)
		box = Q(**{
			f"{self.lat_field}__gte": _bound(lat_min, ROUND_FLOOR),
			f"{self.lat_field}__lte": _bound(lat_max, ROUND_CEILING),
		})
		lng_q = Q()
		for lng_min, lng_max in lng_ranges:
			lng_q |= Q(**{
				f"{self.lng_field}__gte": _bound(lng_min, ROUND_FLOOR),
				f"{self.lng_field}__lte": _bound(lng_max, ROUND_CEILING),
			})
		return box & lng_q

	def point_of(self, obj: Any) -> Optional[GeoPoint]:
		latitude = getattr(obj, self.lat_field)
		longitude = getattr(obj, self.lng_field)
		if latitude is None or longitude is None:
			return None
		return GeoPoint(longitude=float(longitude), latitude=float(latitude))

	def _candidates(self, center: GeoPoint, radius_meters: float, predicate: Optional[Q]) -> Sequence[Any]:
		queryset = self.queryset.filter(self._box_filter(center, radius_meters))
		if predicate is not None:
			queryset = queryset.filter(predicate)
		return list(queryset)

	def query(self, center: GeoPoint, radius_meters: float, predicate: Optional[Q] = None) -> List[Match]:
		"""Entities within ``radius_meters`` of ``center``, nearest first."""

		if radius_meters <= 0:
			raise ValidationError(errors={"radius": ["Radius must be a positive number of meters"]})

		attempt = 0
		while True:
			try:
				candidates = self._candidates(center, radius_meters, predicate)
				break
			except OperationalError as exc:
				if attempt >= self.retries:
					LOGGER.error("Proximity query on %s failed after %s attempts: %s", self.queryset.model.__name__, attempt + 1, exc)
					raise Transient() from exc
				delay = self.backoff_seconds * (2 ** attempt)
				LOGGER.warning("Proximity query on %s failed (%s), retrying in %.2fs", self.queryset.model.__name__, exc, delay)
				self.sleep(delay)
				attempt += 1

		matches = []
		for obj in candidates:
			point = self.point_of(obj)
			if point is None:
				continue
			distance = haversine_meters(center, point)
			if distance <= radius_meters:
				matches.append(Match(obj, point, distance))
		matches.sort(key=lambda match: (match.distance_meters, match.obj.pk))
		LOGGER.debug("Proximity query on %s: %s candidates, %s within %.0fm", self.queryset.model.__name__, len(candidates), len(matches), radius_meters)
		return matches

	def move(self, obj: Any, point: GeoPoint) -> None:
		latitude = quantize_coordinate(point.latitude)
		longitude = quantize_coordinate(point.longitude)
		try:
			self.queryset.model.objects.filter(pk=obj.pk).update(**{self.lat_field: latitude, self.lng_field: longitude})
		except OperationalError as exc:
			raise Transient() from exc
		setattr(obj, self.lat_field, latitude)
		setattr(obj, self.lng_field, longitude)

	def remove(self, obj: Any) -> None:
		try:
			self.queryset.model.objects.filter(pk=obj.pk).update(**{self.lat_field: None, self.lng_field: None})
		except OperationalError as exc:
			raise Transient() from exc
		setattr(obj, self.lat_field, None)
		setattr(obj, self.lng_field, None)


def quantize_coordinate(value: Any) -> Optional[Decimal]:
	if value is None:
		return None
	try:
		return Decimal(str(value)).quantize(_COORDINATE_PLACES)
	except InvalidOperation as exc:
		raise ValidationError("Coordinates must be decimal degrees") from exc

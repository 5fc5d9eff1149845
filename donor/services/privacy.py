"""Disclosure rules for donor records leaving the search path.

``redact`` is pure: it takes a ``DonorView`` and returns a new one. Every mask
is a fixed point of itself, so redacting a redacted view changes nothing.
"""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass
from typing import Any, Dict, Optional

from django.conf import settings

MASK = "***"


@dataclass(frozen=True)
class ViewerContext:
	identity_id: Optional[int] = None

	@classmethod
	def for_user(cls, user) -> "ViewerContext":
		if user is None or not getattr(user, "is_authenticated", False):
			return cls()
		return cls(identity_id=user.pk)


@dataclass(frozen=True)
class DonorView:
	id: int
	identity_id: Optional[int]
	name: str
	email: str
	phone: str
	blood_type: str
	is_available: bool
	is_verified: bool
	rating_average: float
	rating_count: int
	city: str
	address: str
	latitude: Optional[float]
	longitude: Optional[float]
	distance_km: Optional[float] = None
	show_full_name: bool = True
	show_phone: bool = False
	show_email: bool = True
	show_exact_location: bool = False
	max_disclosure_km: float = 10

	@classmethod
	def from_donor(cls, donor, *, distance_km: Optional[float] = None) -> "DonorView":
		return cls(
			id=donor.pk,
			identity_id=donor.user_id,
			name=donor.user.name or "",
			email=donor.user.email or "",
			phone=donor.phone or "",
			blood_type=donor.blood_type,
			is_available=donor.is_available,
			is_verified=donor.is_verified,
			rating_average=float(donor.rating_average or 0),
			rating_count=donor.rating_count,
			city=donor.city or "",
			address=donor.address or "",
			latitude=float(donor.latitude) if donor.latitude is not None else None,
			longitude=float(donor.longitude) if donor.longitude is not None else None,
			distance_km=distance_km,
			show_full_name=donor.show_full_name,
			show_phone=donor.show_phone,
			show_email=donor.show_email,
			show_exact_location=donor.show_exact_location,
			max_disclosure_km=float(donor.max_disclosure_km),
		)

	def as_dict(self) -> Dict[str, Any]:
		location = None
		if self.latitude is not None and self.longitude is not None:
			location = {"type": "Point", "coordinates": [self.longitude, self.latitude]}
		return {
			"id": self.id,
			"name": self.name,
			"email": self.email,
			"phone": self.phone,
			"bloodType": self.blood_type,
			"isAvailable": self.is_available,
			"isVerified": self.is_verified,
			"rating": {"average": self.rating_average, "count": self.rating_count},
			"city": self.city,
			"address": self.address,
			"location": location,
			"distanceKm": round(self.distance_km, 2) if self.distance_km is not None else None,
		}


def mask_name(name: str) -> str:
	if not name:
		return name
	return name[0] + MASK


def mask_phone(phone: str) -> str:
	if not phone:
		return phone
	if len(phone) <= 5:
		return MASK
	return phone[:3] + MASK + phone[-2:]


def mask_email(email: str) -> str:
	if not email:
		return email
	local, at, domain = email.partition("@")
	if not at or not domain:
		return MASK
	if local.endswith(MASK):
		return email
	return local[:1] + MASK + "@" + domain


def coarsen(value: Optional[float], places: Optional[int] = None) -> Optional[float]:
	if value is None:
		return None
	if places is None:
		places = int(getattr(settings, "PRIVACY_GRID_DECIMALS", 2))
	return round(value, places)


def within_disclosure_range(view: DonorView) -> bool:
	"""Donors choose how far away a searcher may be and still see them."""

	return view.distance_km is None or view.distance_km <= view.max_disclosure_km


def redact(view: DonorView, viewer: Optional[ViewerContext] = None) -> DonorView:
	"""Apply the donor's own show-* preferences. A donor looking at their own record sees it whole."""

	if viewer is not None and viewer.identity_id is not None and viewer.identity_id == view.identity_id:
		return view

	changes: Dict[str, Any] = {}

	if not view.show_full_name:
		changes["name"] = mask_name(view.name)
	if not view.show_phone:
		changes["phone"] = mask_phone(view.phone)
	if not view.show_email:
		changes["email"] = mask_email(view.email)
	if not view.show_exact_location:
		changes["latitude"] = coarsen(view.latitude)
		changes["longitude"] = coarsen(view.longitude)
		changes["address"] = view.city

	if not changes:
		return view
	return dataclasses.replace(view, **changes)

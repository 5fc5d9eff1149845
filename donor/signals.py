from __future__ import annotations

import logging
from typing import Iterator, Optional

from django.conf import settings
from django.db.models.signals import pre_save
from django.dispatch import receiver

from emergency.services.geocoding import GeocodeResult, compose_address, geocode_address
from .models import BloodDonor

LOGGER = logging.getLogger(__name__)


def _candidate_addresses(donor: BloodDonor) -> Iterator[str]:
	"""Street line first, then the full postal address when it adds anything."""

	street = (donor.address or "").strip()
	full = compose_address(donor.address, donor.city, donor.state, donor.zipcode)
	if street:
		yield street
	if full and full != street:
		yield full


def locate_donor(donor: BloodDonor, *, country_bias: Optional[str] = None) -> Optional[GeocodeResult]:
	country_bias = country_bias or getattr(settings, "GEOCODER_COUNTRY_BIAS", None)
	allow_remote = getattr(settings, "GEOCODER_ALLOW_REMOTE", True)
	for address in _candidate_addresses(donor):
		result = geocode_address(address, country_bias=country_bias, allow_remote=allow_remote)
		if result:
			return result
	return None


@receiver(pre_save, sender=BloodDonor)
def fill_missing_location(sender, instance: BloodDonor, update_fields=None, **kwargs):
	"""Give address-only donors a point so they show up in radius searches."""

	if instance.latitude is not None and instance.longitude is not None:
		return
	# Partial saves that do not write the point cannot store a lookup.
	if update_fields is not None and not {"latitude", "longitude"} & set(update_fields):
		return

	result = locate_donor(instance)
	if result is None:
		LOGGER.debug("No coordinates found for donor %s", instance.pk or instance.user_id)
		return

	instance.latitude = result.latitude
	instance.longitude = result.longitude
	instance.location_verified = False
	LOGGER.debug("Donor %s placed at (%s, %s) via %s", instance.pk or instance.user_id, result.latitude, result.longitude, result.provider)

"""Emergency request lifecycle, responses, and the nearby-search paths.

A request moves ``active -> fulfilled | cancelled | expired`` exactly once.
Every mutation is a single conditional statement (or a row-locked block
guarded by a unique constraint), so a timed-out call leaves no partial write.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from django.conf import settings
from django.core.paginator import Paginator
from django.db import IntegrityError, OperationalError, transaction
from django.db.models import Count, Q
from django.forms.models import model_to_dict
from django.utils import timezone

from accounts.models import Identity, Role
from accounts.services.permissions import MANAGE_ANY_REQUEST, authorize
from donor.models import BloodDonor, BloodType, DonorStatus
from donor.services.privacy import DonorView, ViewerContext, redact, within_disclosure_range
from emresource.api import clean_form
from emresource.exceptions import (
	Conflict,
	DuplicateResponse,
	Forbidden,
	NotActive,
	NotFound,
	Transient,
	ValidationError,
)
from emergency.forms import EmergencyRequestForm, ResponseForm
from emergency.models import (
	URGENCY_RANK,
	EmergencyRequest,
	FacilityType,
	MedicalFacility,
	RequestStatus,
	ResourceType,
	Response,
	ResponseStatus,
	Urgency,
	Visibility,
)
from emergency.services.proximity import GeoPoint, Match, ProximityIndex

LOGGER = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 20


def _result_limit(limit: Optional[int]) -> int:
	cap = int(getattr(settings, "PROXIMITY_RESULT_LIMIT", 50))
	if limit is None:
		return cap
	return max(1, min(int(limit), cap))


def _check_choice(value: Optional[str], choices, field: str) -> Optional[str]:
	if value in (None, ""):
		return None
	if value not in choices.values:
		raise ValidationError(errors={field: [f"'{value}' is not a valid choice"]})
	return value


def visible_to(identity) -> Q:
	"""Which request visibilities an identity may see in listings."""

	allowed = [Visibility.PUBLIC]
	role = getattr(identity, "role", None)
	if role in (Role.DONOR, Role.ADMIN):
		allowed.append(Visibility.DONORS_ONLY)
	if role in (Role.FACILITY_OPERATOR, Role.ADMIN):
		allowed.append(Visibility.FACILITIES_ONLY)
	query = Q(visibility__in=allowed)
	if getattr(identity, "pk", None):
		query |= Q(requester_id=identity.pk)
	return query


def request_sort_key(match: Match):
	"""Urgency first, then newest, then nearest."""

	request = match.obj
	return (URGENCY_RANK[Urgency(request.urgency)], -request.created_at.timestamp(), match.distance_meters, request.pk)


def donor_sort_key(match: Match):
	"""Nearest first, then verified donors, then higher rated."""

	donor = match.obj
	return (match.distance_meters, not donor.is_verified, -float(donor.rating_average or 0), donor.pk)


class EmergencyEngine:
	def __init__(self, *, clock: Optional[Callable[[], datetime]] = None):
		self.clock = clock or timezone.now

	# -- lookups ----------------------------------------------------------

	def get_request(self, request_id: int, *, viewer=None) -> EmergencyRequest:
		queryset = EmergencyRequest.objects.select_related("requester", "fulfilled_by")
		if viewer is not None and not self._can_manage(viewer, None):
			queryset = queryset.filter(visible_to(viewer))
		request = queryset.filter(pk=request_id).first()
		if request is None:
			raise NotFound("Emergency request not found")
		return request

	def _can_manage(self, actor, request: Optional[EmergencyRequest]) -> bool:
		if authorize(actor, MANAGE_ANY_REQUEST).allowed:
			return True
		return request is not None and request.requester_id == actor.pk

	def can_view_responses(self, actor, request: EmergencyRequest) -> bool:
		return self._can_manage(actor, request)

	# -- create -----------------------------------------------------------

	def create_request(self, requester: Identity, form_data: Dict[str, Any]) -> EmergencyRequest:
		form = EmergencyRequestForm(form_data, now=self.clock())
		clean_form(form)

		request = form.save(commit=False)
		request.requester = requester
		request.status = RequestStatus.ACTIVE
		request.created_at = self.clock()
		try:
			request.save()
		except OperationalError as exc:
			raise Transient() from exc
		LOGGER.info(
			"Identity %s opened %s %s request %s",
			requester.pk,
			request.urgency,
			request.resource_type,
			request.pk,
		)
		return request

	# -- update ---------------------------------------------------------

	def update_request(self, request_id: int, actor: Identity, changes: Dict[str, Any]) -> EmergencyRequest:
		"""Edit an active request. Fields absent from ``changes`` keep their stored value."""

		request = self.get_request(request_id)
		if not self._can_manage(actor, request):
			raise Forbidden("Not authorized to update this request")
		now = self.clock()
		if request.status != RequestStatus.ACTIVE or (request.deadline and request.deadline <= now):
			raise NotActive()

		index = ProximityIndex(EmergencyRequest.objects.all())
		previous = index.point_of(request)
		data = model_to_dict(request, fields=EmergencyRequestForm._meta.fields)
		data.update(changes)
		form = EmergencyRequestForm(data, instance=request, now=now)
		clean_form(form)
		request = form.save(commit=False)
		point = index.point_of(request)

		fields = [name for name in EmergencyRequestForm._meta.fields if name not in ("latitude", "longitude")]
		try:
			with transaction.atomic():
				# A concurrent status change wins; the edit only lands on an active row.
				if EmergencyRequest.objects.select_for_update().filter(pk=request_id, status=RequestStatus.ACTIVE).first() is None:
					raise NotActive()
				request.save(update_fields=fields + ["updated_at"])
				if point != previous:
					index.move(request, point)
		except OperationalError as exc:
			raise Transient() from exc

		LOGGER.info("Identity %s updated request %s", actor.pk, request_id)
		return self.get_request(request_id)

	# -- nearby search ----------------------------------------------------

	def find_nearby(
		self,
		center: GeoPoint,
		radius_meters: float,
		*,
		resource_type: Optional[str] = None,
		urgency: Optional[str] = None,
		viewer=None,
		limit: Optional[int] = None,
	) -> List[Match]:
		resource_type = _check_choice(resource_type, ResourceType, "type")
		urgency = _check_choice(urgency, Urgency, "urgency")

		now = self.clock()
		predicate = Q(status=RequestStatus.ACTIVE) & (Q(deadline__isnull=True) | Q(deadline__gt=now))
		if resource_type:
			predicate &= Q(resource_type=resource_type)
		if urgency:
			predicate &= Q(urgency=urgency)
		if viewer is not None and not self._can_manage(viewer, None):
			predicate &= visible_to(viewer)

		index = ProximityIndex(EmergencyRequest.objects.select_related("requester", "fulfilled_by"))
		matches = index.query(center, radius_meters, predicate)
		matches.sort(key=request_sort_key)
		return matches[:_result_limit(limit)]

	def find_nearby_donors(
		self,
		center: GeoPoint,
		radius_meters: float,
		*,
		blood_type: Optional[str] = None,
		viewer: Optional[ViewerContext] = None,
		limit: Optional[int] = None,
	) -> List[DonorView]:
		"""Available donors near ``center``, redacted per each donor's own preferences."""

		blood_type = _check_choice(blood_type, BloodType, "bloodType")
		predicate = Q(is_available=True, status=DonorStatus.ACTIVE)
		if blood_type:
			predicate &= Q(blood_type=blood_type)

		index = ProximityIndex(BloodDonor.objects.select_related("user"))
		matches = index.query(center, radius_meters, predicate)
		matches.sort(key=donor_sort_key)

		views = []
		for match in matches:
			view = DonorView.from_donor(match.obj, distance_km=match.distance_km)
			if not within_disclosure_range(view):
				continue
			views.append(redact(view, viewer))
			if len(views) >= _result_limit(limit):
				break
		return views

	def find_nearby_facilities(
		self,
		center: GeoPoint,
		radius_meters: float,
		*,
		facility_type: Optional[str] = None,
		limit: Optional[int] = None,
	) -> List[Match]:
		facility_type = _check_choice(facility_type, FacilityType, "type")
		predicate = Q(is_active=True)
		if facility_type:
			predicate &= Q(facility_type=facility_type)

		index = ProximityIndex(MedicalFacility.objects.all())
		return index.query(center, radius_meters, predicate)[:_result_limit(limit)]

	# -- responses --------------------------------------------------------

	def respond(self, request_id: int, responder: Identity, form_data: Dict[str, Any]) -> Response:
		data = clean_form(ResponseForm(form_data))
		now = self.clock()
		try:
			with transaction.atomic():
				request = EmergencyRequest.objects.select_for_update().filter(pk=request_id).first()
				if request is None:
					raise NotFound("Emergency request not found")
				if request.status != RequestStatus.ACTIVE or (request.deadline and request.deadline <= now):
					raise NotActive()
				if request.requester_id == responder.pk:
					raise Forbidden("You cannot respond to your own request")
				response = Response.objects.create(request=request, responder=responder, responded_at=now, **data)
		except IntegrityError as exc:
			LOGGER.warning("Duplicate response from identity %s on request %s", responder.pk, request_id)
			raise DuplicateResponse() from exc
		except OperationalError as exc:
			raise Transient() from exc

		LOGGER.info("Identity %s responded to request %s (response %s)", responder.pk, request_id, response.pk)
		return response

	def decide_response(self, request_id: int, response_id: int, actor: Identity, decision: str) -> Response:
		if decision not in (ResponseStatus.ACCEPTED, ResponseStatus.DECLINED):
			raise ValidationError(errors={"status": ["Responses can only be accepted or declined"]})
		request = self.get_request(request_id)
		if not self._can_manage(actor, request):
			raise Forbidden("Not authorized to manage responses on this request")

		now = self.clock()
		try:
			updated = Response.objects.filter(
				pk=response_id,
				request_id=request_id,
				status=ResponseStatus.PENDING,
				request__status=RequestStatus.ACTIVE,
			).update(status=decision, status_changed_at=now)
		except OperationalError as exc:
			raise Transient() from exc

		response = Response.objects.select_related("responder").filter(pk=response_id, request_id=request_id).first()
		if response is None:
			raise NotFound("Response not found")
		if not updated:
			if EmergencyRequest.objects.filter(pk=request_id).exclude(status=RequestStatus.ACTIVE).exists():
				raise NotActive()
			raise Conflict(f"Response has already been {response.status}")

		LOGGER.info("Identity %s marked response %s as %s", actor.pk, response_id, decision)
		return response

	# -- status -----------------------------------------------------------

	def update_status(
		self,
		request_id: int,
		actor: Identity,
		new_status: str,
		*,
		notes: str = "",
		fulfilled_by: Optional[int] = None,
	) -> EmergencyRequest:
		if new_status not in (RequestStatus.FULFILLED, RequestStatus.CANCELLED, RequestStatus.EXPIRED):
			raise ValidationError(errors={"status": ["Status must be fulfilled, cancelled or expired"]})

		request = self.get_request(request_id)
		if not self._can_manage(actor, request):
			raise Forbidden("Not authorized to update this request")

		now = self.clock()
		changes: Dict[str, Any] = {"status": new_status, "status_changed_at": now, "updated_at": now}
		if notes:
			changes["resolution_notes"] = notes
		if new_status == RequestStatus.FULFILLED:
			if fulfilled_by is not None and not Identity.objects.filter(pk=fulfilled_by).exists():
				raise ValidationError(errors={"fulfilledBy": ["Unknown identity"]})
			changes["fulfilled_at"] = now
			changes["fulfilled_by_id"] = fulfilled_by

		try:
			updated = EmergencyRequest.objects.filter(pk=request_id, status=RequestStatus.ACTIVE).update(**changes)
		except OperationalError as exc:
			raise Transient() from exc

		if not updated:
			current = EmergencyRequest.objects.filter(pk=request_id).values_list("status", flat=True).first()
			LOGGER.warning("Status change of request %s to %s rejected: already %s", request_id, new_status, current)
			raise Conflict(f"Request is already {current}")

		LOGGER.info("Identity %s moved request %s to %s", actor.pk, request_id, new_status)
		return self.get_request(request_id)

	def expire_overdue(self) -> int:
		now = self.clock()
		expired = EmergencyRequest.objects.filter(
			status=RequestStatus.ACTIVE,
			deadline__isnull=False,
			deadline__lte=now,
		).update(status=RequestStatus.EXPIRED, status_changed_at=now, updated_at=now)
		if expired:
			LOGGER.info("Expired %s overdue emergency requests", expired)
		return expired

	# -- listings ---------------------------------------------------------

	def list_requests(self, filters: Dict[str, Any], *, viewer=None) -> Dict[str, Any]:
		queryset = EmergencyRequest.objects.select_related("requester", "fulfilled_by")
		status = filters.get("status") or RequestStatus.ACTIVE
		queryset = queryset.filter(status=status)
		if filters.get("type"):
			queryset = queryset.filter(resource_type=filters["type"])
		if filters.get("urgency"):
			queryset = queryset.filter(urgency=filters["urgency"])
		if filters.get("bloodType"):
			queryset = queryset.filter(blood_type=filters["bloodType"])
		if filters.get("city"):
			queryset = queryset.filter(city__icontains=filters["city"])
		if filters.get("state"):
			queryset = queryset.filter(state__icontains=filters["state"])
		if viewer is not None and not self._can_manage(viewer, None):
			queryset = queryset.filter(visible_to(viewer))

		queryset = queryset.order_by("urgency_rank", "-created_at", "-id")
		paginator = Paginator(queryset, filters.get("limit") or DEFAULT_PAGE_SIZE)
		page = paginator.get_page(filters.get("page") or 1)
		return {
			"items": list(page.object_list),
			"total": paginator.count,
			"page": page.number,
			"pages": paginator.num_pages if paginator.count else 0,
		}

	def requests_for(self, requester: Identity) -> List[EmergencyRequest]:
		return list(
			EmergencyRequest.objects.filter(requester=requester)
			.select_related("requester", "fulfilled_by")
			.prefetch_related("responses__responder")
			.order_by("-created_at", "-id")
		)

	def incoming_responses(self, requester: Identity) -> List[EmergencyRequest]:
		return list(
			EmergencyRequest.objects.filter(requester=requester)
			.annotate(response_count=Count("responses"))
			.filter(response_count__gt=0)
			.select_related("requester", "fulfilled_by")
			.prefetch_related("responses__responder")
			.order_by("-created_at", "-id")
		)

	def outgoing_responses(self, responder: Identity) -> List[Response]:
		return list(
			Response.objects.filter(responder=responder)
			.select_related("responder", "request", "request__requester", "request__fulfilled_by")
			.order_by("-request__created_at", "-id")
		)

	def stats_overview(self) -> Dict[str, int]:
		active = EmergencyRequest.objects.filter(status=RequestStatus.ACTIVE)
		return {
			"activeRequests": active.count(),
			"fulfilledRequests": EmergencyRequest.objects.filter(status=RequestStatus.FULFILLED).count(),
			"criticalRequests": active.filter(urgency=Urgency.CRITICAL).count(),
			"availableDonors": BloodDonor.objects.filter(is_available=True, status=DonorStatus.ACTIVE).count(),
			"activeFacilities": MedicalFacility.objects.filter(is_active=True).count(),
		}

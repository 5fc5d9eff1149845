"""Translation between the wire shapes used by clients and model fields."""

from __future__ import annotations

from typing import Any, Dict, Optional

from emresource.exceptions import ValidationError

from .services.proximity import GeoPoint, Match, quantize_coordinate


def _section(payload: Dict[str, Any], key: str) -> Dict[str, Any]:
	value = payload.get(key)
	if value is None:
		return {}
	if not isinstance(value, dict):
		raise ValidationError(errors={key: ["Must be an object"]})
	return value


def location_fields(payload: Dict[str, Any]) -> Dict[str, Any]:
	"""Accept either a GeoJSON ``location`` (longitude first) or flat ``lat``/``lng``."""

	location = payload.get('location')
	if isinstance(location, dict) and location.get('coordinates') is not None:
		coordinates = location['coordinates']
		if not isinstance(coordinates, (list, tuple)) or len(coordinates) != 2:
			raise ValidationError(errors={'location': ["Coordinates must be [longitude, latitude]"]})
		point = GeoPoint.parse(coordinates[1], coordinates[0])
	elif payload.get('lat') is not None or payload.get('lng') is not None:
		point = GeoPoint.parse(payload.get('lat'), payload.get('lng'))
	else:
		return {}
	return {
		'latitude': quantize_coordinate(point.latitude),
		'longitude': quantize_coordinate(point.longitude),
	}


def request_form_data(payload: Dict[str, Any]) -> Dict[str, Any]:
	address = _section(payload, 'address')
	patient = _section(payload, 'patient')
	contact = _section(payload, 'contact')
	quantity = _section(payload, 'quantity')
	data = {
		'resource_type': payload.get('type'),
		'urgency': payload.get('urgency'),
		'blood_type': payload.get('bloodType') or '',
		'patient_name': patient.get('name', ''),
		'patient_age': patient.get('age'),
		'patient_condition': patient.get('condition', ''),
		'hospital': patient.get('hospital', ''),
		'address': address.get('street', ''),
		'city': address.get('city', ''),
		'state': address.get('state', ''),
		'zipcode': address.get('zipCode', ''),
		'contact_phone': contact.get('phone', ''),
		'contact_email': contact.get('email', ''),
		'description': payload.get('description', ''),
		'quantity_units': quantity.get('units'),
		'quantity_description': quantity.get('description', ''),
		'deadline': payload.get('deadline'),
		'visibility': payload.get('visibility'),
	}
	data.update(location_fields(payload))
	return data


# (wire section or None, wire key, model field)
_REQUEST_WIRE_FIELDS = (
	(None, 'type', 'resource_type'),
	(None, 'urgency', 'urgency'),
	(None, 'bloodType', 'blood_type'),
	(None, 'description', 'description'),
	(None, 'deadline', 'deadline'),
	(None, 'visibility', 'visibility'),
	('patient', 'name', 'patient_name'),
	('patient', 'age', 'patient_age'),
	('patient', 'condition', 'patient_condition'),
	('patient', 'hospital', 'hospital'),
	('address', 'street', 'address'),
	('address', 'city', 'city'),
	('address', 'state', 'state'),
	('address', 'zipCode', 'zipcode'),
	('contact', 'phone', 'contact_phone'),
	('contact', 'email', 'contact_email'),
	('quantity', 'units', 'quantity_units'),
	('quantity', 'description', 'quantity_description'),
)


def request_changes(payload: Dict[str, Any]) -> Dict[str, Any]:
	"""Only the fields the payload names, for partial edits of an existing request."""

	changes = {}
	for section, key, field in _REQUEST_WIRE_FIELDS:
		source = _section(payload, section) if section else payload
		if key in source:
			changes[field] = source[key]
	changes.update(location_fields(payload))
	return changes


def response_form_data(payload: Dict[str, Any]) -> Dict[str, Any]:
	contact = _section(payload, 'contactInfo')
	availability = _section(payload, 'availability')
	return {
		'message': payload.get('message', ''),
		'contact_phone': contact.get('phone', ''),
		'contact_email': contact.get('email', ''),
		'available_on': availability.get('date'),
		'available_time': availability.get('time', ''),
	}


def identity_summary(identity) -> Optional[Dict[str, Any]]:
	if identity is None:
		return None
	return {'id': identity.pk, 'name': identity.name, 'email': identity.email}


def _point(obj) -> Dict[str, Any]:
	return {'type': 'Point', 'coordinates': [float(obj.longitude), float(obj.latitude)]}


def _iso(value) -> Optional[str]:
	return value.isoformat() if value else None


def response_to_dict(response) -> Dict[str, Any]:
	return {
		'id': response.pk,
		'requestId': response.request_id,
		'responder': identity_summary(response.responder),
		'message': response.message,
		'contactInfo': {'phone': response.contact_phone, 'email': response.contact_email},
		'availability': {'date': _iso(response.available_on), 'time': response.available_time},
		'status': response.status,
		'respondedAt': _iso(response.responded_at),
	}


def request_to_dict(request, *, responses=None, distance_km: Optional[float] = None) -> Dict[str, Any]:
	data = {
		'id': request.pk,
		'requester': identity_summary(request.requester),
		'type': request.resource_type,
		'urgency': request.urgency,
		'bloodType': request.blood_type or None,
		'patient': {
			'name': request.patient_name,
			'age': request.patient_age,
			'condition': request.patient_condition,
			'hospital': request.hospital,
		},
		'location': _point(request),
		'address': {
			'street': request.address,
			'city': request.city,
			'state': request.state,
			'zipCode': request.zipcode,
		},
		'contact': {'phone': request.contact_phone, 'email': request.contact_email},
		'description': request.description,
		'quantity': {'units': request.quantity_units, 'description': request.quantity_description},
		'deadline': _iso(request.deadline),
		'visibility': request.visibility,
		'status': request.status,
		'fulfillment': None,
		'createdAt': _iso(request.created_at),
		'updatedAt': _iso(request.updated_at),
	}
	if request.fulfilled_at or request.resolution_notes:
		data['fulfillment'] = {
			'fulfilledBy': identity_summary(request.fulfilled_by),
			'fulfilledAt': _iso(request.fulfilled_at),
			'notes': request.resolution_notes,
		}
	if responses is not None:
		data['responses'] = [response_to_dict(response) for response in responses]
	if distance_km is not None:
		data['distanceKm'] = round(distance_km, 2)
	return data


def request_match_to_dict(match: Match) -> Dict[str, Any]:
	return request_to_dict(match.obj, distance_km=match.distance_km)


def facility_to_dict(facility, *, distance_km: Optional[float] = None) -> Dict[str, Any]:
	data = {
		'id': facility.pk,
		'name': facility.name,
		'type': facility.facility_type,
		'location': _point(facility),
		'address': {
			'street': facility.address,
			'city': facility.city,
			'state': facility.state,
			'zipCode': facility.zipcode,
		},
		'contact': {'phone': facility.phone, 'emergencyPhone': facility.emergency_phone},
		'resources': {
			'emergencyService': facility.has_emergency_service,
			'ambulanceService': facility.has_ambulance_service,
			'bloodBank': facility.has_blood_bank,
			'oxygenSupply': facility.has_oxygen_supply,
		},
		'isVerified': facility.is_verified,
	}
	if distance_km is not None:
		data['distanceKm'] = round(distance_km, 2)
	return data

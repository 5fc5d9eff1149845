import logging

from django.conf import settings
from django.db import IntegrityError, transaction
from django.forms.models import model_to_dict

from accounts.services.permissions import MANAGE_DONOR_PROFILE, SEARCH_DONORS, require
from emresource.api import api_response, api_view, clean_form, parse_json_body
from emresource.exceptions import Conflict, NotFound, ValidationError
from emergency.serializers import location_fields
from emergency.services.engine import EmergencyEngine
from emergency.services.proximity import GeoPoint, ProximityIndex, clamp_radius

from .forms import AvailabilityForm, DonorForm
from .models import BloodDonor, BloodType
from .services.privacy import ViewerContext

logger = logging.getLogger(__name__)

LOCATION_FIELDS = ('latitude', 'longitude')

# Wire name -> model field for the donor profile payload.
PROFILE_ALIASES = {
    'bloodType': 'blood_type',
    'zipCode': 'zipcode',
    'lastDonationDate': 'last_donated_at',
    'showFullName': 'show_full_name',
    'showPhone': 'show_phone',
    'showEmail': 'show_email',
    'showExactLocation': 'show_exact_location',
    'maxDistance': 'max_disclosure_km',
}


def _profile_form_data(payload, instance=None):
    """Overlay the payload on the stored profile so omitted fields keep their value."""
    data = model_to_dict(instance or BloodDonor(), fields=DonorForm._meta.fields)
    preferences = payload.get('privacySettings') or {}
    address = payload.get('address')
    if isinstance(address, dict):
        payload = dict(payload, address=address.get('street', ''), city=address.get('city', ''),
                       state=address.get('state', ''), zipcode=address.get('zipCode', ''))
    for source in (payload, preferences):
        for key, value in source.items():
            field = PROFILE_ALIASES.get(key, key)
            if field in DonorForm._meta.fields:
                data[field] = value
    if payload.get('location') or ('lat' in payload and 'lng' in payload):
        data.update(location_fields(payload))
    return {key: value for key, value in data.items() if value is not None}


def _profile_to_dict(donor):
    location = None
    if donor.latitude is not None and donor.longitude is not None:
        location = {'type': 'Point', 'coordinates': [float(donor.longitude), float(donor.latitude)]}
    next_date = donor.next_eligible_donation_date
    return {
        'id': donor.pk,
        'name': donor.get_name,
        'email': donor.user.email,
        'bloodType': donor.blood_type,
        'phone': donor.phone,
        'address': donor.address,
        'city': donor.city,
        'state': donor.state,
        'zipCode': donor.zipcode,
        'location': location,
        'locationVerified': donor.location_verified,
        'isAvailable': donor.is_available,
        'lastDonationDate': donor.last_donated_at.isoformat() if donor.last_donated_at else None,
        'nextEligibleDate': next_date.isoformat() if next_date else None,
        'privacySettings': {
            'showFullName': donor.show_full_name,
            'showPhone': donor.show_phone,
            'showEmail': donor.show_email,
            'showExactLocation': donor.show_exact_location,
            'maxDistance': donor.max_disclosure_km,
        },
        'isVerified': donor.is_verified,
        'rating': {'average': float(donor.rating_average), 'count': donor.rating_count},
        'status': donor.status,
    }


def _own_profile(user):
    donor = BloodDonor.objects.select_related('user').filter(user=user).first()
    if donor is None:
        raise NotFound('Donor profile not found')
    return donor


@api_view(['POST'], capability=MANAGE_DONOR_PROFILE)
def donor_register_view(request):
    if BloodDonor.objects.filter(user=request.user).exists():
        raise Conflict('Donor profile already exists')

    form = DonorForm(_profile_form_data(parse_json_body(request)))
    clean_form(form)
    donor = form.save(commit=False)
    donor.user = request.user
    try:
        donor.save()
    except IntegrityError as exc:
        raise Conflict('Donor profile already exists') from exc

    logger.info("Identity %s registered donor profile %s (%s)", request.user.pk, donor.pk, donor.blood_type)
    return api_response(_profile_to_dict(donor), message='Donor profile created successfully', status=201)


@api_view(['GET', 'PUT'], capability=MANAGE_DONOR_PROFILE)
def donor_profile_view(request):
    donor = _own_profile(request.user)
    if request.method == 'GET':
        return api_response(_profile_to_dict(donor))

    index = ProximityIndex(BloodDonor.objects.all())
    previous = index.point_of(donor)
    payload = parse_json_body(request)
    form = DonorForm(_profile_form_data(payload, donor), instance=donor)
    clean_form(form)
    donor = form.save(commit=False)

    # The point is written through the index; `"location": null` unpins the donor.
    fields = [field for field in DonorForm._meta.fields if field not in LOCATION_FIELDS] + ['updated_at']
    cleared = 'location' in payload and payload['location'] is None
    point = index.point_of(donor)
    with transaction.atomic():
        if point is None and not cleared:
            # Address-only profiles are geocoded on save.
            donor.save(update_fields=fields + [*LOCATION_FIELDS, 'location_verified'])
        else:
            donor.save(update_fields=fields)
            if cleared:
                index.remove(donor)
            elif point != previous:
                index.move(donor, point)
    logger.info("Identity %s updated donor profile %s", request.user.pk, donor.pk)
    return api_response(_profile_to_dict(donor), message='Donor profile updated successfully')


@api_view(['PATCH'], capability=MANAGE_DONOR_PROFILE)
def donor_availability_view(request):
    donor = _own_profile(request.user)
    payload = parse_json_body(request)
    if 'isAvailable' not in payload and 'is_available' not in payload:
        raise ValidationError(errors={'isAvailable': ['This field is required.']})

    data = clean_form(AvailabilityForm({
        'is_available': payload.get('isAvailable', payload.get('is_available')),
        'last_donated_at': payload.get('lastDonationDate', payload.get('last_donated_at')),
    }))
    donor.mark_availability(data['is_available'], data.get('last_donated_at'))
    logger.info("Donor %s availability set to %s", donor.pk, donor.is_available)

    next_date = donor.next_eligible_donation_date
    return api_response(
        {
            'isAvailable': donor.is_available,
            'lastDonationDate': donor.last_donated_at.isoformat() if donor.last_donated_at else None,
            'nextEligibleDate': next_date.isoformat() if next_date else None,
        },
        message='Availability updated successfully',
    )


@api_view(['GET'], login_required=False)
def donor_nearby_view(request):
    # Anonymous searches are allowed; redaction follows each donor's own preferences.
    if request.user.is_authenticated:
        require(request.user, SEARCH_DONORS)

    center = GeoPoint.parse(request.GET.get('lat'), request.GET.get('lng'))
    radius = clamp_radius(
        request.GET.get('radius') or request.GET.get('maxDistance'),
        settings.DONOR_SEARCH_DEFAULT_RADIUS_METERS,
    )
    donors = EmergencyEngine().find_nearby_donors(
        center,
        radius,
        blood_type=request.GET.get('bloodType'),
        viewer=ViewerContext.for_user(request.user),
    )
    return api_response([donor.as_dict() for donor in donors], count=len(donors))


@api_view(['GET'], login_required=False)
def blood_types_view(request):
    return api_response([{'value': value, 'label': label} for value, label in BloodType.choices])

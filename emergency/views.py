from django.conf import settings

from accounts.services.permissions import (
    CREATE_REQUEST,
    RESPOND_TO_REQUEST,
    SEARCH_FACILITIES,
    VIEW_REQUESTS,
    VIEW_STATS,
)
from emresource.api import api_response, api_view, clean_form, parse_json_body

from .forms import RequestFilterForm, ResponseDecisionForm, StatusForm
from .models import RequestStatus
from .serializers import (
    facility_to_dict,
    request_form_data,
    request_match_to_dict,
    request_changes,
    request_to_dict,
    response_form_data,
    response_to_dict,
)
from .services.engine import EmergencyEngine
from .services.proximity import GeoPoint, clamp_radius

def _radius(request, default_setting):
    raw = request.GET.get('radius') or request.GET.get('maxDistance')
    return clamp_radius(raw, getattr(settings, default_setting, None))


def _center(request):
    return GeoPoint.parse(request.GET.get('lat'), request.GET.get('lng'))


@api_view(['GET'], capability=VIEW_REQUESTS)
def request_list_view(request):
    filters = clean_form(RequestFilterForm(request.GET))
    page = EmergencyEngine().list_requests(filters, viewer=request.user)
    return api_response(
        [request_to_dict(item) for item in page['items']],
        count=len(page['items']),
        total=page['total'],
        page=page['page'],
        pages=page['pages'],
    )


@api_view(['POST'], capability=CREATE_REQUEST)
def request_create_view(request):
    payload = parse_json_body(request)
    emergency = EmergencyEngine().create_request(request.user, request_form_data(payload))
    return api_response(
        request_to_dict(emergency, responses=[]),
        message='Emergency request created successfully',
        status=201,
    )


@api_view(['GET'], capability=VIEW_REQUESTS)
def request_nearby_view(request):
    matches = EmergencyEngine().find_nearby(
        _center(request),
        _radius(request, 'PROXIMITY_DEFAULT_RADIUS_METERS'),
        resource_type=request.GET.get('type'),
        urgency=request.GET.get('urgency'),
        viewer=request.user,
    )
    return api_response([request_match_to_dict(match) for match in matches], count=len(matches))


@api_view(['GET', 'PUT', 'DELETE'], capability=VIEW_REQUESTS)
def request_detail_view(request, pk):
    engine = EmergencyEngine()
    if request.method == 'PUT':
        emergency = engine.update_request(pk, request.user, request_changes(parse_json_body(request)))
        return api_response(request_to_dict(emergency), message='Request updated successfully')
    if request.method == 'DELETE':
        # Withdrawal is a cancellation; the row and its responses are kept.
        engine.update_status(pk, request.user, RequestStatus.CANCELLED, notes='Withdrawn by requester')
        return api_response(message='Request cancelled successfully')

    emergency = engine.get_request(pk, viewer=request.user)
    data = request_to_dict(emergency)
    if engine.can_view_responses(request.user, emergency):
        data['responses'] = [response_to_dict(r) for r in emergency.responses.select_related('responder')]
    else:
        data['responseCount'] = emergency.responses.count()
    return api_response(data)


@api_view(['POST'], capability=RESPOND_TO_REQUEST)
def request_respond_view(request, pk):
    payload = parse_json_body(request)
    response = EmergencyEngine().respond(pk, request.user, response_form_data(payload))
    return api_response(response_to_dict(response), message='Response submitted successfully', status=201)


@api_view(['PATCH'], capability=VIEW_REQUESTS)
def request_status_view(request, pk):
    data = clean_form(StatusForm(_status_form_data(parse_json_body(request))))
    emergency = EmergencyEngine().update_status(
        pk,
        request.user,
        data['status'],
        notes=data.get('notes') or '',
        fulfilled_by=data.get('fulfilled_by'),
    )
    return api_response(request_to_dict(emergency), message='Request status updated successfully')


def _status_form_data(payload):
    return {
        'status': payload.get('status'),
        'notes': payload.get('notes', ''),
        'fulfilled_by': payload.get('fulfilledBy'),
    }


@api_view(['PATCH'], capability=VIEW_REQUESTS)
def response_decision_view(request, pk, response_pk):
    data = clean_form(ResponseDecisionForm(parse_json_body(request)))
    response = EmergencyEngine().decide_response(pk, response_pk, request.user, data['status'])
    return api_response(response_to_dict(response), message=f"Response {response.status}")


@api_view(['GET'], capability=VIEW_REQUESTS)
def user_requests_view(request):
    requests = EmergencyEngine().requests_for(request.user)
    data = [request_to_dict(item, responses=item.responses.all()) for item in requests]
    return api_response(data, count=len(data))


@api_view(['GET'], capability=VIEW_REQUESTS)
def incoming_responses_view(request):
    requests = EmergencyEngine().incoming_responses(request.user)
    return api_response([request_to_dict(item, responses=item.responses.all()) for item in requests])


@api_view(['GET'], capability=VIEW_REQUESTS)
def outgoing_responses_view(request):
    data = []
    for response in EmergencyEngine().outgoing_responses(request.user):
        item = request_to_dict(response.request)
        item['myResponse'] = response_to_dict(response)
        data.append(item)
    return api_response(data)


@api_view(['GET'], capability=VIEW_STATS)
def stats_overview_view(request):
    return api_response(EmergencyEngine().stats_overview())


@api_view(['GET'], capability=SEARCH_FACILITIES)
def facilities_nearby_view(request):
    matches = EmergencyEngine().find_nearby_facilities(
        _center(request),
        _radius(request, 'FACILITY_SEARCH_DEFAULT_RADIUS_METERS'),
        facility_type=request.GET.get('type'),
    )
    data = [facility_to_dict(match.obj, distance_km=match.distance_km) for match in matches]
    return api_response(data, count=len(data))

import logging

from django.contrib.auth import login, logout
from django.middleware.csrf import get_token
from django.views.decorators.csrf import ensure_csrf_cookie

from emresource.api import api_response, api_view, clean_form, parse_json_body

from .forms import OtpForm, SigninForm, SignupForm
from .services.gate import IdentityGate
from .services.permissions import ROLE_CAPABILITIES, destination_for

logger = logging.getLogger(__name__)


def _session_key(request):
    if not request.session.session_key:
        request.session.save()
        # Marked so the middleware sends the cookie for the new session.
        request.session.modified = True
    return request.session.session_key


def _identity_payload(identity):
    return {
        'id': identity.pk,
        'name': identity.name,
        'email': identity.email,
        'role': identity.role,
        'isVerified': identity.is_verified,
    }


def _delivery_message(issued, sent_message):
    result = issued.delivery
    if result is None or result.delivered or result.queued:
        return sent_message, None
    return (
        'OTP issued but the email could not be sent. Please request a new code shortly.',
        result.reason,
    )


@api_view(['POST'], login_required=False)
def signup_send_otp_view(request):
    data = clean_form(SignupForm(parse_json_body(request)))
    issued = IdentityGate().start_signup(
        _session_key(request),
        name=data['name'],
        email=data['email'],
        password=data['password'],
        role=data['role'],
    )
    message, delivery_error = _delivery_message(issued, 'OTP sent to your email. Please verify to complete registration.')
    return api_response(
        {'email': issued.email, 'expiresAt': issued.expires_at.isoformat(), 'deliveryError': delivery_error},
        message=message,
    )


@api_view(['POST'], login_required=False)
def signup_verify_otp_view(request):
    data = clean_form(OtpForm(parse_json_body(request)))
    identity = IdentityGate().complete_signup(request.session.session_key, data['otp'])
    login(request, identity, backend='django.contrib.auth.backends.ModelBackend')
    return api_response(
        {'user': _identity_payload(identity), 'redirect': destination_for(identity.role)},
        message='Registration successful',
        status=201,
    )


@api_view(['POST'], login_required=False)
def signin_send_otp_view(request):
    data = clean_form(SigninForm(parse_json_body(request)))
    issued = IdentityGate().start_signin(
        _session_key(request),
        email=data['email'],
        password=data['password'],
        role=data['role'],
    )
    message, delivery_error = _delivery_message(issued, 'OTP sent to your email. Please verify to complete login.')
    return api_response(
        {'email': issued.email, 'expiresAt': issued.expires_at.isoformat(), 'deliveryError': delivery_error},
        message=message,
    )


@api_view(['POST'], login_required=False)
def signin_verify_otp_view(request):
    data = clean_form(OtpForm(parse_json_body(request)))
    identity = IdentityGate().complete_signin(request.session.session_key, data['otp'])
    login(request, identity, backend='django.contrib.auth.backends.ModelBackend')
    return api_response(
        {'user': _identity_payload(identity), 'redirect': destination_for(identity.role)},
        message='Login successful',
    )


@api_view(['POST'], login_required=False)
def logout_view(request):
    IdentityGate().cancel(request.session.session_key)
    if request.user.is_authenticated:
        logger.info("Identity %s signed out", request.user.pk)
    logout(request)
    return api_response(message='Logged out successfully')


@api_view(['GET'])
def me_view(request):
    identity = request.user
    payload = _identity_payload(identity)
    payload['capabilities'] = sorted(ROLE_CAPABILITIES.get(identity.role, ()))
    payload['redirect'] = destination_for(identity.role)
    return api_response({'user': payload})


@ensure_csrf_cookie
@api_view(['GET'], login_required=False)
def csrf_view(request):
    return api_response({'csrfToken': get_token(request)})

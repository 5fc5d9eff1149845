"""JSON envelope shared by every endpoint: ``{success, message?, data?}``."""

from __future__ import annotations

import json
import logging
from functools import wraps
from typing import Any, Dict, Iterable, Optional

from django.http import JsonResponse
from django.views.decorators.http import require_http_methods

from accounts.services.permissions import require
from .exceptions import DomainError, Fatal, Forbidden, Unauthorized, ValidationError

logger = logging.getLogger(__name__)


def api_response(data: Any = None, *, message: Optional[str] = None, status: int = 200, **extra) -> JsonResponse:
	payload: Dict[str, Any] = {'success': True}
	if message:
		payload['message'] = message
	if data is not None:
		payload['data'] = data
	payload.update(extra)
	return JsonResponse(payload, status=status)


def api_error(exc: DomainError) -> JsonResponse:
	payload: Dict[str, Any] = {'success': False, 'message': exc.message}
	if exc.errors:
		payload['errors'] = exc.errors
	return JsonResponse(payload, status=exc.status_code)


def parse_json_body(request) -> Dict[str, Any]:
	if not request.body:
		return {}
	try:
		payload = json.loads(request.body)
	except (UnicodeDecodeError, json.JSONDecodeError) as exc:
		raise ValidationError("Request body must be valid JSON") from exc
	if not isinstance(payload, dict):
		raise ValidationError("Request body must be a JSON object")
	return payload


def form_errors(form) -> Dict[str, list]:
	return {field: [str(error) for error in errors] for field, errors in form.errors.items()}


def clean_form(form) -> Dict[str, Any]:
	"""Return ``form.cleaned_data`` or raise ``ValidationError`` with the field errors."""

	if not form.is_valid():
		raise ValidationError(errors=form_errors(form))
	return form.cleaned_data


def api_view(methods: Iterable[str], *, login_required: bool = True, capability: Optional[str] = None):
	"""Wrap a JSON view: method check, authentication, capability check, error envelope.

	The capability map is consulted exactly once here, so view bodies only deal
	with ownership rules that depend on the record being touched.
	"""

	def decorator(view):
		@require_http_methods(list(methods))
		@wraps(view)
		def wrapper(request, *args, **kwargs):
			try:
				if (login_required or capability) and not request.user.is_authenticated:
					raise Unauthorized()
				if capability:
					require(request.user, capability)
				return view(request, *args, **kwargs)
			except Fatal as exc:
				logger.error(
					"Fatal error on %s %s (identity=%s): %s",
					request.method,
					request.path,
					getattr(request.user, 'pk', None),
					exc.message,
				)
				return api_error(exc)
			except DomainError as exc:
				logger.info("%s on %s %s: %s", type(exc).__name__, request.method, request.path, exc.message)
				return api_error(exc)
			except Exception:
				logger.exception(
					"Unhandled error on %s %s (identity=%s)",
					request.method,
					request.path,
					getattr(request.user, 'pk', None),
				)
				return api_error(Fatal())

		return wrapper

	return decorator


def csrf_failure(request, reason=''):
	"""``CSRF_FAILURE_VIEW``: reject in the JSON envelope instead of Django's HTML page."""

	logger.warning("CSRF check failed on %s %s: %s", request.method, request.path, reason)
	return api_error(Forbidden("CSRF token missing or incorrect. Fetch one from /auth/csrf and send it as X-CSRFToken."))

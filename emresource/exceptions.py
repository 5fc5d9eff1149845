"""Error taxonomy shared by the accounts, donor and emergency apps.

Every expected outcome is a ``DomainError`` carrying the HTTP status it maps
to, so views never translate errors by hand.
"""

from __future__ import annotations

from typing import Any, Mapping, Optional


class DomainError(Exception):
	status_code = 400
	default_message = "Request could not be processed"

	def __init__(self, message: Optional[str] = None, *, errors: Optional[Mapping[str, Any]] = None):
		self.message = message or self.default_message
		self.errors = dict(errors) if errors else None
		super().__init__(self.message)


class ValidationError(DomainError):
	"""Malformed or missing input the caller can correct."""

	status_code = 400
	default_message = "Validation errors"


class NotFound(DomainError):
	status_code = 404
	default_message = "Not found"


class Conflict(DomainError):
	status_code = 409
	default_message = "Conflicting state"


class Unauthorized(DomainError):
	status_code = 401
	default_message = "Authentication required"


class Forbidden(DomainError):
	status_code = 403
	default_message = "Not authorized"


class Expired(DomainError):
	status_code = 410
	default_message = "Expired"


class Transient(DomainError):
	"""The store timed out or was unavailable; safe to retry with backoff."""

	status_code = 503
	default_message = "Service temporarily unavailable, please retry"


class Fatal(DomainError):
	"""Data-integrity or programming violation. Never reported as success."""

	status_code = 500
	default_message = "Server error"


class InvalidCode(ValidationError):
	default_message = "Invalid or expired code"


class ExpiredCode(Expired):
	"""The pending code outlived its TTL; same wording as a wrong code."""

	default_message = "Invalid or expired code"


class InvalidCredentials(Unauthorized):
	default_message = "Invalid email or password"


class RoleMismatch(Forbidden):
	default_message = "Role does not match this account"


class DuplicateRegistration(Conflict):
	default_message = "User already exists with this email"


class DuplicateResponse(Conflict):
	default_message = "You have already responded to this request"


class NotActive(Conflict):
	default_message = "This emergency request is no longer active"

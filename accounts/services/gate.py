"""Session/identity gate: turns a verified OTP handshake into an identity.

Each client session owns at most one ``PendingAuthContext`` row. Starting a
signup or signin overwrites it, and a context whose credential is no longer
live is treated as absent.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable, Optional

from django.contrib.auth.hashers import make_password
from django.db import IntegrityError, transaction
from django.utils import timezone

from accounts.models import Identity, OtpPurpose, PendingAuthContext, Role, normalize_email
from accounts.services.otp import EXPIRED, MISMATCH, IssuedCode, OtpManager
from emresource.exceptions import (
	DuplicateRegistration,
	ExpiredCode,
	Fatal,
	InvalidCode,
	InvalidCredentials,
	RoleMismatch,
	ValidationError,
)

logger = logging.getLogger(__name__)

SELF_SERVICE_ROLES = (Role.REQUESTER, Role.DONOR, Role.FACILITY_OPERATOR)

_NO_PENDING = {
	OtpPurpose.SIGNUP: "No pending registration found. Please start signup again.",
	OtpPurpose.SIGNIN: "No pending signin found. Please start signin again.",
}


class IdentityGate:
	def __init__(self, otp: Optional[OtpManager] = None, *, clock: Optional[Callable[[], datetime]] = None):
		self.clock = clock or (otp.clock if otp else timezone.now)
		self.otp = otp or OtpManager(clock=self.clock)

	# -- signup -----------------------------------------------------------

	def start_signup(self, session_key: str, *, name: str, email: str, password: str, role: str = Role.REQUESTER) -> IssuedCode:
		email = normalize_email(email)
		if role not in SELF_SERVICE_ROLES:
			raise ValidationError(errors={'role': [f"'{role}' accounts cannot be created through signup"]})
		if Identity.objects.filter(email=email).exists():
			raise DuplicateRegistration()

		payload = {
			'name': name.strip(),
			'role': role,
			'password_hash': make_password(password),
		}
		return self._open_context(session_key, OtpPurpose.SIGNUP, email, payload)

	def complete_signup(self, session_key: str, code: str) -> Identity:
		context = self._live_context(session_key, OtpPurpose.SIGNUP)
		payload = context.payload or {}
		if not payload.get('password_hash') or payload.get('role') not in SELF_SERVICE_ROLES:
			raise Fatal(f"Pending registration {context.pk} is missing its payload")

		with transaction.atomic():
			result = self.otp.verify(context.email, OtpPurpose.SIGNUP, code)
			if result.ok:
				if Identity.objects.filter(email=context.email).exists():
					raise DuplicateRegistration()
				try:
					with transaction.atomic():
						identity = Identity(
							email=context.email,
							name=payload.get('name', ''),
							role=payload['role'],
							is_verified=True,
						)
						identity.password = payload['password_hash']
						identity.save()
				except IntegrityError as exc:
					raise DuplicateRegistration() from exc
				context.delete()

		if not result.ok:
			self._reject(context, result.reason)

		logger.info("Created %s identity %s for %s", identity.role, identity.pk, identity.email)
		return identity

	# -- signin -----------------------------------------------------------

	def start_signin(self, session_key: str, *, email: str, password: str, role: str) -> IssuedCode:
		email = normalize_email(email)
		identity = Identity.objects.filter(email=email).first()
		if identity is None:
			# Hash anyway so unknown emails cost the same as wrong passwords.
			make_password(password)
			raise InvalidCredentials()
		if not identity.is_active or not identity.has_usable_password() or not identity.check_password(password):
			raise InvalidCredentials()
		if identity.role != role:
			logger.warning("Sign-in for %s asserted role %s, account holds %s", email, role, identity.role)
			raise RoleMismatch(
				f"Access denied. This account is registered as '{identity.role}', not '{role}'."
			)

		return self._open_context(session_key, OtpPurpose.SIGNIN, email, {'identity_id': identity.pk})

	def complete_signin(self, session_key: str, code: str) -> Identity:
		context = self._live_context(session_key, OtpPurpose.SIGNIN)
		identity = Identity.objects.filter(pk=(context.payload or {}).get('identity_id'), is_active=True).first()
		if identity is None:
			PendingAuthContext.objects.filter(pk=context.pk).delete()
			raise InvalidCredentials()

		with transaction.atomic():
			result = self.otp.verify(context.email, OtpPurpose.SIGNIN, code)
			if result.ok:
				context.delete()

		if not result.ok:
			self._reject(context, result.reason)

		logger.info("Identity %s signed in", identity.pk)
		return identity

	# -- external identity provider ---------------------------------------

	def link_external_identity(self, *, email: str, display_name: str, subject: str) -> Identity:
		"""Attach a provider-verified identity, provisioning one when the email is new."""

		email = normalize_email(email)
		if not email or not subject:
			raise ValidationError("A verified email and provider subject are required")

		identity = Identity.objects.filter(provider_subject=subject).first()
		if identity is not None:
			return identity

		with transaction.atomic():
			identity = Identity.objects.select_for_update().filter(email=email).first()
			if identity is not None:
				identity.provider_subject = subject
				identity.is_verified = True
				if not identity.name:
					identity.name = display_name or ''
				identity.save(update_fields=['provider_subject', 'is_verified', 'name'])
				logger.info("Linked provider subject to identity %s", identity.pk)
				return identity

			identity = Identity.objects.create_user(
				email,
				None,
				name=display_name or '',
				role=Role.REQUESTER,
				is_verified=True,
				provider_subject=subject,
			)
		logger.info("Provisioned identity %s from external provider", identity.pk)
		return identity

	# -- helpers ----------------------------------------------------------

	def pending_context(self, session_key: Optional[str]) -> Optional[PendingAuthContext]:
		if not session_key:
			return None
		return PendingAuthContext.objects.filter(session_key=session_key).first()

	def cancel(self, session_key: Optional[str]) -> None:
		if session_key:
			PendingAuthContext.objects.filter(session_key=session_key).delete()

	def _open_context(self, session_key: str, purpose: str, email: str, payload: dict) -> IssuedCode:
		if not session_key:
			raise Fatal("A client session is required to start authentication")
		with transaction.atomic():
			issued = self.otp.issue(email, purpose, deliver=False)
			PendingAuthContext.objects.update_or_create(
				session_key=session_key,
				defaults={
					'purpose': purpose,
					'email': email,
					'payload': payload,
					'expires_at': issued.expires_at,
				},
			)
		return self.otp.deliver(issued)

	def _live_context(self, session_key: Optional[str], purpose: str) -> PendingAuthContext:
		context = self.pending_context(session_key)
		if context is None or context.purpose != purpose:
			raise ValidationError(_NO_PENDING[purpose])
		if context.expires_at <= self.clock() or not self.otp.has_live_credential(context.email, purpose):
			logger.info("Discarding dead %s context for %s", purpose, context.email)
			PendingAuthContext.objects.filter(pk=context.pk).delete()
			raise ExpiredCode()
		return context

	def _reject(self, context: PendingAuthContext, reason: str) -> None:
		logger.warning("Rejected %s code for %s: %s", context.purpose, context.email, reason)
		if reason != MISMATCH:
			PendingAuthContext.objects.filter(pk=context.pk).delete()
		if reason == EXPIRED:
			raise ExpiredCode()
		raise InvalidCode()

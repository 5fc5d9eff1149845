"""One-time codes bound to an (email, purpose) pair.

The credential table holds at most one row per pair (unique constraint), so
issuing is an upsert and the row present is by definition the live code.
Verification is a single conditional DELETE: of two concurrent callers
presenting the same code only one sees a deleted row.
"""

from __future__ import annotations

import dataclasses
import hashlib
import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Optional, Tuple

from django.conf import settings
from django.db import OperationalError, transaction
from django.utils import timezone

from accounts.models import OneTimeCredential, OtpPurpose, PendingAuthContext, normalize_email
from accounts.services import delivery
from emresource.exceptions import Transient, ValidationError

logger = logging.getLogger(__name__)

CODE_LENGTH = 6

OK = 'ok'
NOT_FOUND = 'not-found'
MISMATCH = 'mismatch'
EXPIRED = 'expired'


@dataclass(frozen=True)
class IssuedCode:
	email: str
	purpose: str
	code: str
	issued_at: datetime
	expires_at: datetime
	delivery: Optional[delivery.DeliveryResult] = None


@dataclass(frozen=True)
class VerificationResult:
	ok: bool
	reason: str


def generate_code() -> str:
	return str(secrets.randbelow(10 ** CODE_LENGTH)).zfill(CODE_LENGTH)


def digest_code(code: str) -> str:
	return hashlib.sha256(str(code).strip().encode('utf-8')).hexdigest()


def _check_purpose(purpose: str) -> str:
	if purpose not in OtpPurpose.values:
		raise ValidationError(f"Unknown code purpose '{purpose}'")
	return purpose


class OtpManager:
	def __init__(
		self,
		*,
		clock: Optional[Callable[[], datetime]] = None,
		ttl_seconds: Optional[int] = None,
		deliver: Optional[Callable[[str, str, str], delivery.DeliveryResult]] = None,
	):
		self.clock = clock or timezone.now
		if ttl_seconds is None:
			ttl_seconds = int(getattr(settings, 'OTP_TTL_SECONDS', 300))
		self.ttl = timedelta(seconds=ttl_seconds)
		self._deliver = deliver or delivery.deliver_code

	def issue(self, email: str, purpose: str, *, deliver: bool = True) -> IssuedCode:
		"""Replace whatever code the pair had with a fresh one.

		Pass ``deliver=False`` when the caller wants to send the email only after
		its own transaction commits, then call :meth:`deliver`.
		"""

		email = normalize_email(email)
		purpose = _check_purpose(purpose)
		code = generate_code()
		issued_at = self.clock()
		expires_at = issued_at + self.ttl

		try:
			with transaction.atomic():
				OneTimeCredential.objects.update_or_create(
					email=email,
					purpose=purpose,
					defaults={
						'code_digest': digest_code(code),
						'issued_at': issued_at,
						'expires_at': expires_at,
					},
				)
		except OperationalError as exc:
			raise Transient() from exc

		logger.info("Issued %s code for %s, valid until %s", purpose, email, expires_at.isoformat())
		issued = IssuedCode(email, purpose, code, issued_at, expires_at)
		if deliver:
			issued = self.deliver(issued)
		return issued

	def deliver(self, issued: IssuedCode) -> IssuedCode:
		result = self._deliver(issued.email, issued.code, issued.purpose)
		if not result.delivered and not result.queued:
			logger.warning("Code for %s (%s) issued but not delivered: %s", issued.email, issued.purpose, result.reason)
		return dataclasses.replace(issued, delivery=result)

	def verify(self, email: str, purpose: str, submitted_code: str) -> VerificationResult:
		email = normalize_email(email)
		purpose = _check_purpose(purpose)
		now = self.clock()

		try:
			consumed, _ = OneTimeCredential.objects.filter(
				email=email,
				purpose=purpose,
				code_digest=digest_code(submitted_code),
				expires_at__gt=now,
			).delete()
			if consumed:
				logger.info("Verified %s code for %s", purpose, email)
				return VerificationResult(True, OK)

			credential = OneTimeCredential.objects.filter(email=email, purpose=purpose).first()
			if credential is None:
				return VerificationResult(False, NOT_FOUND)
			if not credential.is_live(now):
				# The store's own eviction may lag; an expired row is treated as gone.
				OneTimeCredential.objects.filter(pk=credential.pk, expires_at__lte=now).delete()
				return VerificationResult(False, EXPIRED)
		except OperationalError as exc:
			raise Transient() from exc

		return VerificationResult(False, MISMATCH)

	def has_live_credential(self, email: str, purpose: str) -> bool:
		return OneTimeCredential.objects.filter(
			email=normalize_email(email),
			purpose=purpose,
			expires_at__gt=self.clock(),
		).exists()

	def purge_expired(self) -> Tuple[int, int]:
		now = self.clock()
		credentials, _ = OneTimeCredential.objects.filter(expires_at__lte=now).delete()
		contexts, _ = PendingAuthContext.objects.filter(expires_at__lte=now).delete()
		return credentials, contexts

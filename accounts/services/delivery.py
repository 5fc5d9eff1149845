"""Outbound OTP email: the delivery collaborator behind the OTP manager."""

from __future__ import annotations

import logging
import smtplib
from dataclasses import dataclass
from typing import Optional

from django.conf import settings
from django.core.mail import send_mail
from kombu.exceptions import OperationalError as BrokerError

logger = logging.getLogger(__name__)

_PURPOSE_WORDING = {
	'signup': 'complete your registration',
	'signin': 'finish signing in',
}


@dataclass
class DeliveryResult:
	"""Outcome of handing a code to the mail transport. Never blocks issuance."""

	delivered: bool
	queued: bool = False
	reason: Optional[str] = None


def build_otp_message(code: str, purpose: str) -> tuple:
	prefix = getattr(settings, 'OTP_EMAIL_SUBJECT_PREFIX', '')
	minutes = max(int(getattr(settings, 'OTP_TTL_SECONDS', 300)) // 60, 1)
	subject = f"{prefix}Your verification code"
	body = (
		f"Use the code {code} to {_PURPOSE_WORDING.get(purpose, 'continue')}.\n"
		f"The code expires in {minutes} minutes and can be used once.\n\n"
		"If you did not request this code you can ignore this email."
	)
	return subject, body


def send_otp_email(email: str, code: str, purpose: str) -> None:
	subject, body = build_otp_message(code, purpose)
	send_mail(subject, body, settings.DEFAULT_FROM_EMAIL, [email], fail_silently=False)


def deliver_code(email: str, code: str, purpose: str) -> DeliveryResult:
	"""Send (or enqueue) the OTP email, reporting failures instead of raising."""

	if getattr(settings, 'OTP_DELIVERY_ASYNC', False):
		from accounts.tasks import deliver_otp_email

		# The code rides in the message body only; task logs and events see a masked copy
		# and the worker drops the message once the code could no longer be used.
		try:
			deliver_otp_email.apply_async(
				(email, code, purpose),
				expires=int(getattr(settings, 'OTP_TTL_SECONDS', 300)),
				argsrepr=repr((email, '******', purpose)),
			)
		except BrokerError as exc:
			logger.error("Could not enqueue %s code email for %s: %s", purpose, email, exc)
			return DeliveryResult(False, reason='queue-unavailable')
		return DeliveryResult(False, queued=True)

	try:
		send_otp_email(email, code, purpose)
	except (smtplib.SMTPException, OSError) as exc:
		logger.error("Failed to send %s code email to %s: %s", purpose, email, exc)
		return DeliveryResult(False, reason='transport-error')

	logger.info("Sent %s code email to %s", purpose, email)
	return DeliveryResult(True)

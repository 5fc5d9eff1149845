import logging

from celery import shared_task

from accounts.services import delivery
from accounts.services.otp import OtpManager


logger = logging.getLogger(__name__)


@shared_task(bind=True, ignore_result=True, autoretry_for=(Exception,), retry_backoff=True, retry_kwargs={'max_retries': 3})
def deliver_otp_email(self, email: str, code: str, purpose: str) -> None:
    delivery.send_otp_email(email, code, purpose)


@shared_task
def purge_expired_credentials() -> dict:
    credentials, contexts = OtpManager().purge_expired()
    if credentials or contexts:
        logger.info("Purged %s expired credentials and %s dead pending contexts", credentials, contexts)
    return {'credentials': credentials, 'contexts': contexts}

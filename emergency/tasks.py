from celery import shared_task

from emergency.services.engine import EmergencyEngine


@shared_task
def expire_overdue_requests() -> int:
    return EmergencyEngine().expire_overdue()

from celery import Celery

from app.config import settings

celery_app = Celery(
    "secure_library",
    broker=settings.celery_broker_url,
    backend=settings.celery_result_backend,
    include=["app.tasks.messaging"],
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_time_limit=60,
    task_always_eager=settings.celery_always_eager,
    broker_connection_retry_on_startup=True,
)

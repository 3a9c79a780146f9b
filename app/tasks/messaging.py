import logging

from app.celery_app import celery_app
from app.services.dispatch import mask_destination

logger = logging.getLogger(__name__)


def deliver_code(destination: str, code: str, purpose: str) -> None:
    """Hand a verification code to the SMS/email provider.

    No provider is wired in yet; the hand-off is recorded in the log with the
    destination masked and the code omitted.
    """
    logger.info(
        "Verification code for %s queued for provider (destination %s)",
        purpose,
        mask_destination(destination),
    )


@celery_app.task(name="app.tasks.messaging.send_code", ignore_result=True)
def send_code(destination: str, code: str, purpose: str = "login") -> None:
    try:
        deliver_code(destination, code, purpose)
    except Exception as e:
        logger.exception(
            "Failed to deliver %s code to %s: %s",
            purpose,
            mask_destination(destination),
            e,
        )

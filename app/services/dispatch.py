import logging

logger = logging.getLogger(__name__)


def mask_destination(destination: str) -> str:
    if "@" in destination:
        local, _, domain = destination.partition("@")
        return f"{local[:1]}***@{domain}"
    digits = destination.strip()
    if len(digits) <= 4:
        return "*" * len(digits)
    return f"{'*' * (len(digits) - 4)}{digits[-4:]}"


class CodeDispatcher:
    """Fire-and-forget delivery of verification codes.

    Queues a Celery task. Never raises: the user can ask for a new code.
    """

    def send_code(self, destination: str, code: str, purpose: str) -> None:
        try:
            from app.tasks.messaging import send_code

            send_code.delay(destination=destination, code=code, purpose=purpose)
            logger.debug("Queued %s code dispatch", purpose)
        except Exception as e:
            logger.exception("Failed to queue %s code dispatch: %s", purpose, e)


dispatcher = CodeDispatcher()

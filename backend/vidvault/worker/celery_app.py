from __future__ import annotations

from celery import Celery
from celery.signals import worker_process_init

from vidvault.core.logging import configure_logging
from vidvault.core.settings import get_settings


def create_celery_app() -> Celery:
    settings = get_settings()
    app = Celery(
        "vidvault",
        broker=settings.celery_broker_url,
        backend=settings.celery_result_backend,
        include=["vidvault.worker.tasks"],
    )
    app.conf.update(
        task_serializer="json",
        result_serializer="json",
        accept_content=["json"],
        task_default_queue="default",
        # A task is only acked after it ran, so a killed worker does not lose it.
        task_acks_late=True,
        worker_prefetch_multiplier=1,
        worker_hijack_root_logger=False,
    )
    return app


celery_app = create_celery_app()


@worker_process_init.connect
def init_worker(**kwargs) -> None:
    settings = get_settings()
    configure_logging(settings.log_level, settings.log_format)

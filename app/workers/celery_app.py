from celery import Celery
from app.core.config import settings

celery_app = Celery("bootcamp_directory", broker=settings.REDIS_URL, backend=settings.REDIS_URL)

celery_app.conf.include = ["app.workers.tasks.aggregates"]
celery_app.conf.task_acks_late = True
celery_app.conf.timezone = "UTC"

"""
Celery worker entry point:

    celery -A app.modulekit.modules.queue.worker worker -Q assembly-queue
"""
from app.modulekit import create_app

flask_app = create_app()
celery_app = flask_app.extensions["celery"]

#!/usr/bin/env python3
"""Start a Celery worker for batch jobs with suppressed security warnings for containers."""

import logging
import sys
import warnings

from celery.bin import worker

# Suppress the superuser privilege warning
warnings.filterwarnings('ignore', category=UserWarning, message='.*superuser privileges.*')
warnings.filterwarnings('ignore', category=RuntimeWarning, message='.*superuser privileges.*')

from app.core.config import get_settings
from app.db.session import init_db
from app.workers.celery_app import celery_app

if __name__ == '__main__':
    settings = get_settings()
    logging.basicConfig(level=settings.log_level.upper())
    init_db()

    worker_app = worker.worker(app=celery_app)

    sys.argv = [
        'celery',
        '-A', 'app.workers.celery_app.celery_app',
        'worker',
        f'--loglevel={settings.log_level.lower()}',
        f'--queues={settings.batch_jobs_queue}',
        '--pool=solo',
        '--without-mingle',
        '--without-gossip',
    ] + sys.argv[1:]

    worker_app.run()

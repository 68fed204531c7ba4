import os
from celery import Celery
from celery.schedules import crontab

os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'cleanswift_project.settings')

app = Celery('cleanswift_project')
app.config_from_object('django.conf:settings', namespace='CELERY')
app.autodiscover_tasks()

# Transfer retries are not scheduled; see manage.py retry_failed_transfers.
app.conf.beat_schedule = {
    'run-weekly-payouts': {
        'task': 'core.tasks.run_weekly_payouts_task',
        'schedule': crontab(minute=0, hour=9, day_of_week='wed'),
    },
    'send-booking-reminders-hourly': {
        'task': 'core.tasks.send_booking_reminders_task',
        'schedule': crontab(minute=0),  # Every hour
    },
    'sync-processing-transfers': {
        'task': 'core.tasks.sync_processing_transfers_task',
        'schedule': crontab(minute=30),
    },
}

app.conf.timezone = 'UTC'

# clinic_lims/celery.py
import os

from celery import Celery

os.environ.setdefault("DJANGO_SETTINGS_MODULE", "clinic_lims.settings")

app = Celery("clinic_lims")
app.config_from_object("django.conf:settings", namespace="CELERY")
app.autodiscover_tasks()

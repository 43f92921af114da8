from app.tasks.celery_app import celery
from app.tasks import worker_jobs


@celery.task(name="app.tasks.jobs.process_message_queue")
def process_message_queue(limit: int = 50):
    return worker_jobs.process_message_queue(limit=limit)


@celery.task(name="app.tasks.jobs.process_provider_payouts")
def process_provider_payouts(limit: int = 50):
    return worker_jobs.process_provider_payouts(limit=limit)

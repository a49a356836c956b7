"""Service layer: business operations used by the API routers and Celery tasks."""

"""
Gunicorn configuration for the shop metrics API.

Uvicorn workers under Gunicorn. Reconciliation requests block until the
rebuild finishes, so the worker timeout is generous.
"""

import multiprocessing
import os

# Server socket
bind = os.getenv("BIND", "0.0.0.0:8000")
backlog = 2048

# Worker processes
workers = int(os.getenv("WORKERS", multiprocessing.cpu_count() * 2 + 1))
worker_class = "uvicorn.workers.UvicornWorker"
worker_connections = 1000
max_requests = 10000
max_requests_jitter = 1000
timeout = int(os.getenv("WORKER_TIMEOUT", 900))
keepalive = 5
graceful_timeout = 30

proc_name = "shopmetrics-api"

daemon = False
pidfile = "/tmp/shopmetrics-gunicorn.pid"

# Logging; application logs go through structlog on stdout
errorlog = "-"
loglevel = os.getenv("LOG_LEVEL", "info").lower()
accesslog = None


def when_ready(server):
    server.log.info("shopmetrics API ready on %s", bind)


def worker_abort(worker):
    worker.log.warning("Worker %s aborted, likely a reconciliation past the timeout", worker.pid)

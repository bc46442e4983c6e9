"""Gunicorn configuration for production deployment.

Usage:
    gunicorn -c gunicorn.conf.py gatekeeper.main:app
"""
from __future__ import annotations

import multiprocessing
import os

bind = os.getenv("GUNICORN_BIND", "0.0.0.0:8000")

# Every worker runs its own event loop, auth client and audit worker task.
workers = int(os.getenv("GUNICORN_WORKERS", str(multiprocessing.cpu_count() + 1)))
worker_class = "uvicorn.workers.UvicornWorker"
worker_tmp_dir = "/dev/shm"

# Stripe gives up on a delivery after 20s and retries later.
timeout = int(os.getenv("GUNICORN_TIMEOUT", "20"))
graceful_timeout = int(os.getenv("GUNICORN_GRACEFUL_TIMEOUT", "15"))
keepalive = int(os.getenv("GUNICORN_KEEPALIVE", "5"))

max_requests = int(os.getenv("GUNICORN_MAX_REQUESTS", "5000"))
max_requests_jitter = int(os.getenv("GUNICORN_MAX_REQUESTS_JITTER", "250"))

# Access lines duplicate the JSON request_completed log; off unless asked for.
accesslog = os.getenv("GUNICORN_ACCESSLOG") or None
errorlog = os.getenv("GUNICORN_ERRORLOG", "-")
loglevel = os.getenv("GUNICORN_LOGLEVEL", "info")

proc_name = "gatekeeper"

"""Gunicorn configuration file."""

import os

# Server socket
bind = os.getenv("GUNICORN_BIND", "0.0.0.0:8000")
backlog = 2048

# Worker processes. Identities, credentials and pending challenges live in
# process memory unless CREDENTIAL_BACKEND=sqlalchemy, and challenges always
# do, so a single worker serves every ceremony; concurrency comes from threads.
workers = 1
worker_class = "gthread"
threads = int(os.getenv("GUNICORN_THREADS", "4"))
timeout = int(os.getenv("GUNICORN_TIMEOUT", "60"))
graceful_timeout = int(os.getenv("GUNICORN_GRACEFUL_TIMEOUT", "30"))
keepalive = int(os.getenv("GUNICORN_KEEPALIVE", "5"))

# Debug config
reload = os.getenv("FLASK_ENV", "production") == "development"

# Logging
errorlog = os.getenv("GUNICORN_ERROR_LOG", "-")
loglevel = os.getenv("GUNICORN_LOG_LEVEL", "info")
accesslog = os.getenv("GUNICORN_ACCESS_LOG", "-")
access_log_format = '%(h)s %(l)s %(u)s %(t)s "%(r)s" %(s)s %(b)s "%(f)s" "%(a)s"'

# Security
limit_request_line = 4094
limit_request_fields = 100
limit_request_field_size = 8190

forwarded_allow_ips = os.getenv("GUNICORN_FORWARDED_ALLOW_IPS", "127.0.0.1,::1")
secure_scheme_headers = {
    'X-FORWARDED-PROTOCOL': 'ssl',
    'X-FORWARDED-PROTO': 'https',
    'X-FORWARDED-SSL': 'on'
}

# Build the app, and with it the encryption key, before accepting traffic
preload_app = True

worker_tmp_dir = "/dev/shm"


def on_starting(server):
    """Log when the server is starting."""
    server.log.info("Gunicorn server is starting")


def worker_exit(server, worker):
    """Log when a worker exits."""
    server.log.info(f"Worker {worker.pid} exited")

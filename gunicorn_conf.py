"""
Gunicorn Configuration for the Payment Gateway
uvicorn workers, each with its own database pool, queue client and Booker connection
"""
import os

# Server socket
bind = f"0.0.0.0:{os.getenv('PORT', '8000')}"
backlog = 2048

# Worker processes
workers = int(os.getenv("GATEWAY_WORKERS", "2"))
worker_class = "uvicorn.workers.UvicornWorker"
worker_connections = 1000
max_requests = 10000  # Restart workers after 10k requests
max_requests_jitter = 1000  # Stagger worker restarts
timeout = 60
graceful_timeout = 30  # Lets the lifespan close the Booker socket and pools
keepalive = 30

# Logging
accesslog = "-"  # Log to stdout
errorlog = "-"   # Log to stderr
loglevel = os.getenv("LOG_LEVEL", "info").lower()
access_log_format = '%(h)s %(l)s %(u)s %(t)s "%(r)s" %(s)s %(b)s %(D)s'

# Process naming
proc_name = "payment_gateway"

# Server mechanics
daemon = False
pidfile = None

# Each worker opens its resources in its own event loop
preload_app = False

wsgi_app = "gateway_server:app"


def when_ready(server):
    """Called just after the server is started."""
    print(f"✅ Gunicorn ready with {workers} uvicorn workers on {bind}")


def post_fork(server, worker):
    """Called just after a worker has been forked."""
    print(f"🔧 Worker {worker.pid} started")


def worker_exit(server, worker):
    """Called just after a worker has been exited."""
    print(f"👋 Worker {worker.pid} exited")

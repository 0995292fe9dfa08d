"""
Gunicorn configuration for the rewards ledger.

Usage:
    gunicorn -c gunicorn.conf.py run:app
"""
import os

bind = f"0.0.0.0:{os.getenv('PORT', '8080')}"

# Ledger writes hold row locks (or the SQLite write lock) briefly;
# sync workers keep one transaction per worker
workers = int(os.getenv('GUNICORN_WORKERS', '2'))
worker_class = 'sync'
timeout = 60
keepalive = 5

# Logging
accesslog = '-'  # stdout
errorlog = '-'   # stderr
loglevel = os.getenv('LOG_LEVEL', 'info')
capture_output = True

proc_name = 'rewards-ledger'

preload_app = True
graceful_timeout = 30


def on_starting(server):
    print("[Gunicorn] Starting rewards ledger...")


def on_exit(server):
    print("[Gunicorn] Rewards ledger shutting down...")

# © 2024–2025 Harnisch LLC. All Rights Reserved.
# Licensed exclusively for use by St. Edward Church & School (Nashville, TN).
# Unauthorized use, distribution, or modification is prohibited.

import os

# One worker: the sync engine keeps the tenant's view in process memory
workers = 1
worker_class = 'gthread'
threads = int(os.environ.get('GUNICORN_THREADS', 4))
timeout = 120  # provider retries can stretch a request
keepalive = 2

bind = f"0.0.0.0:{os.environ.get('PORT', '10000')}"

# Logging
loglevel = os.environ.get('LOG_LEVEL', 'info').lower()
accesslog = '-'
errorlog = '-'

preload_app = False

proc_name = 'schedule-sync'

max_requests = 0
max_requests_jitter = 0

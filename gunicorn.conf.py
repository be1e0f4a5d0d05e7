# © 2024–2025 Harnisch LLC. All Rights Reserved.
# Licensed exclusively for use by St. Edward Church & School (Nashville, TN).
# Unauthorized use, distribution, or modification is prohibited.

import os

# One worker: sync state, the cache store and the scheduler live in-process
workers = 1
worker_class = 'gthread'
threads = int(os.environ.get('GUNICORN_THREADS', 4))
timeout = 60  # Sync runs stop themselves at PROCESSING_TIME_LIMIT
keepalive = 2

bind = f"0.0.0.0:{os.environ.get('PORT', '10000')}"

# Logging
loglevel = os.environ.get('LOG_LEVEL', 'info').lower()
accesslog = '-'
errorlog = '-'

preload_app = False

# Process naming
proc_name = 'webinar-sync'

max_requests = 0
max_requests_jitter = 0

print(f"Gunicorn binding to {bind}")

# Gunicorn configuration for the River Planner API
# Run from solver-python/: gunicorn -c ../deploy/gunicorn.conf.py server:app

import os

# Bind to localhost - nginx will proxy
bind = "127.0.0.1:5000"

# One worker: the planner session and its sweep threads live in-process
workers = 1

# Threads - /best polls and /stop must be served while a sweep runs
threads = 4

# Worker class - gthread for threaded workers
worker_class = "gthread"

# Requests return immediately; sweeps run in background threads
timeout = 60

# Keep-alive
keepalive = 5

# Logging - files when the log dir exists, stdout otherwise
if os.path.exists('/var/log/river-planner'):
    accesslog = "/var/log/river-planner/access.log"
    errorlog = "/var/log/river-planner/error.log"
else:
    accesslog = "-"
    errorlog = "-"
loglevel = "info"

# Process naming
proc_name = "river-planner"

# Graceful timeout
graceful_timeout = 30

# Restarting the worker would drop the session, so keep this high
max_requests = 10000
max_requests_jitter = 1000

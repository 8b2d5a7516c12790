import os

wsgi_app = 'wsgi:app'
proc_name = 'saanify'

# Server socket
port = int(os.environ.get('PORT', 5000))
bind = f'0.0.0.0:{port}'

# Worker processes
workers = int(os.environ.get('WEB_CONCURRENCY', 2))
worker_class = 'sync'

# Logging
loglevel = os.environ.get('LOG_LEVEL', 'info').lower()
accesslog = '-'
errorlog = '-'
capture_output = True

# Timeouts
timeout = int(os.environ.get('GUNICORN_TIMEOUT', 120))
keepalive = 5

# Worker recycling
max_requests = 1000
max_requests_jitter = 50

reload = os.environ.get('FLASK_ENV') == 'development'

import os

wsgi_app = 'app:create_app()'

port = int(os.environ.get('PORT', 5000))
bind = f'0.0.0.0:{port}'

# The local JSON store is read/modify/write per request, so without a
# DATABASE_URL run a single worker.
workers = int(os.environ.get('WEB_CONCURRENCY', 2 if os.environ.get('DATABASE_URL') else 1))
worker_class = 'sync'

# Application logs go through the root logger configured in create_app;
# gunicorn adds the access log on stdout and its own errors on stderr.
loglevel = os.environ.get('LOG_LEVEL', 'info').lower()
accesslog = '-'
errorlog = '-'

# CSV imports of a full school can take a while on the relational backend
timeout = 120

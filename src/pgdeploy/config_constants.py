#!/usr/bin/env python3
"""
File name and default value constants for pgdeploy.

This is the single place where file names, service names and stack defaults
are spelled out. Other modules import from here instead of hardcoding strings.

Naming Convention:
- .env              = Rendered deployment config (generated once, gitignored)
- pgdeploy.toml     = Optional orchestrator settings (committed)
- backup_*.sql      = Database dumps written by the backup verb
"""

# ============================================================================
# Filenames
# ============================================================================

ENV_FILE = '.env'
ENV_TEMPLATE = 'env.j2'
SETTINGS_FILE = 'pgdeploy.toml'

BACKUP_PREFIX = 'backup_'
BACKUP_SUFFIX = '.sql'
BACKUP_TIMESTAMP_FORMAT = '%Y%m%d_%H%M%S'

# ============================================================================
# Compose services
# ============================================================================

DB_SERVICE = 'db'
CACHE_SERVICE = 'redis'
APP_SERVICE = 'web'

# ============================================================================
# Deployment config defaults (values written into .env on bootstrap)
# ============================================================================

DEFAULT_DB_NAME = 'poll_system_db'
DEFAULT_DB_USER = 'postgres'
DEFAULT_DB_HOST = 'db'
DEFAULT_DB_PORT = 5432
DEFAULT_REDIS_URL = 'redis://redis:6379/1'
DEFAULT_CELERY_BROKER_URL = 'redis://redis:6379/0'
DEFAULT_CELERY_RESULT_BACKEND = 'redis://redis:6379/0'
DEFAULT_ALLOWED_HOSTS = ('localhost', '127.0.0.1')

# Entropy of generated secrets, in random bytes before encoding
DB_PASSWORD_BYTES = 32
SECRET_KEY_BYTES = 50

# ============================================================================
# Readiness and migration timing (seconds)
# ============================================================================

DEFAULT_READINESS_INTERVAL = 1.0
DEFAULT_READINESS_TIMEOUT = 60.0
DEFAULT_SETTLE_DELAY = 5.0
# Upper bound for a single pg_isready call
DEFAULT_PROBE_TIMEOUT = 10.0

# ============================================================================
# External commands run inside the stack
# ============================================================================

DEFAULT_MIGRATE_COMMAND = ('python', 'manage.py', 'migrate')
DEFAULT_SUPERUSER_COMMAND = ('python', 'manage.py', 'createsuperuser')

# ============================================================================
# Operator-facing access information
# ============================================================================

DEFAULT_PUBLISHED_DB_HOST = 'localhost'
DEFAULT_WEB_URL = 'http://localhost:8000'
DEFAULT_API_DOCS_PATH = '/api/schema/swagger-ui/'

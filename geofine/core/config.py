"""
Runtime configuration read from the environment (.env supported)
"""
import os
from dotenv import load_dotenv

load_dotenv()

# Database
DATABASE_URL = os.getenv('DATABASE_URL', 'sqlite:///./geofine.db')
DB_POOL_TIMEOUT = float(os.getenv('DB_POOL_TIMEOUT', 10))
DB_STATEMENT_TIMEOUT_MS = int(os.getenv('DB_STATEMENT_TIMEOUT_MS', 15000))

# Redis
REDIS_HOST = os.getenv('REDIS_HOST', 'redis')
REDIS_PORT = int(os.getenv('REDIS_PORT', 6379))

# Event queue: 'threads', 'redis' or 'inline'
QUEUE_BACKEND = os.getenv('QUEUE_BACKEND', 'threads')
QUEUE_MAXSIZE = int(os.getenv('QUEUE_MAXSIZE', 1000))
QUEUE_WORKERS = int(os.getenv('QUEUE_WORKERS', 4))
QUEUE_SUBMIT_TIMEOUT = float(os.getenv('QUEUE_SUBMIT_TIMEOUT', 2.0))
REDIS_QUEUE_KEY = os.getenv('REDIS_QUEUE_KEY', 'geofine:events')

# Geofence import
DEFAULT_GEOFENCE_RADIUS_M = float(os.getenv('DEFAULT_GEOFENCE_RADIUS_M', 150))
IMPORTED_ROUTE_NAME = os.getenv('IMPORTED_ROUTE_NAME', 'Imported Geofences')

LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO')

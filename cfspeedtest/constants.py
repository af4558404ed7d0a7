"""Endpoints and tunables shared by the speedtest engine"""

# API endpoints
BASE_URL = 'https://speed.cloudflare.com'
DOWNLOAD_PATH = '__down'
UPLOAD_PATH = '__up'
TRACE_PATH = 'cdn-cgi/trace'

# HTTP client
REQUEST_TIMEOUT = 30  # seconds, applied to every request
DOWNLOAD_CHUNK_SIZE = 65536  # 64KB chunks while draining downloads
UPLOAD_FILL_BYTE = b'\x01'

# Scheduling
TIME_THRESHOLD = 5.0  # seconds per payload size before larger sizes are skipped
MAX_ATTEMPT_FACTOR = 4  # attempt budget = target successes * factor

# Retry backoff
RETRY_BASE_BACKOFF_MS = 250
RETRY_MAX_BACKOFF_MS = 3000
RETRY_MAX_EXPONENT = 4
RETRYABLE_STATUS_CODES = frozenset({408, 425, 429, 500, 502, 503, 504})

# Event pipeline
EVENT_QUEUE_SIZE = 512
LIFECYCLE_PUT_TIMEOUT = 5.0  # seconds a lifecycle event may wait on a full subscriber

# Defaults for a run
DEFAULT_NR_TESTS = 10
DEFAULT_NR_LATENCY_TESTS = 25

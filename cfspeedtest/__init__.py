"""Cloudflare Speedtest - unofficial client for speed.cloudflare.com"""

__version__ = "2.0.0"

from .client import build_session
from .errors import MetadataError, SpeedTestCancelled, SpeedTestError
from .events import EventBus, Subscription
from .logging_setup import set_log_level, silence_warnings
from .metadata import fetch_metadata
from .runner import SpeedTestRun, run_speed_test
from .stats import calc_stats
from .types import PayloadSize, SpeedTestConfig, SpeedTestResult, TestType

__all__ = [
    'EventBus',
    'MetadataError',
    'PayloadSize',
    'SpeedTestCancelled',
    'SpeedTestConfig',
    'SpeedTestError',
    'SpeedTestResult',
    'SpeedTestRun',
    'Subscription',
    'TestType',
    'build_session',
    'calc_stats',
    'fetch_metadata',
    'run_speed_test',
    'set_log_level',
    'silence_warnings',
]

"""Session engine: heartbeat evaluation, start gate and tamper checks."""

from watchbudget.engine.monitor import HeartbeatMonitor
from watchbudget.engine.tamper import validate_position

__all__ = ["HeartbeatMonitor", "validate_position"]

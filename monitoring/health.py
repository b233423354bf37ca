"""Health reporting for the CalDAV tasks application."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

from .exceptions import error_handler


@dataclass
class HealthStatus:
    """Health status information."""

    healthy: bool
    timestamp: datetime
    checks: Dict[str, bool] = field(default_factory=dict)
    last_error: Optional[Dict[str, Any]] = None
    error_count: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            'status': 'healthy' if self.healthy else 'unhealthy',
            'timestamp': self.timestamp.isoformat(),
            'checks': dict(self.checks),
            'error_count': self.error_count,
            'last_error': self.last_error,
        }


class HealthChecker:
    """Runs named liveness checks and folds in the error statistics."""

    def __init__(self):
        self._checks: Dict[str, Callable[[], bool]] = {}

    def register(self, name: str, check: Callable[[], bool]) -> None:
        self._checks[name] = check

    def check_health(self) -> HealthStatus:
        results = {}
        for name, check in self._checks.items():
            try:
                results[name] = bool(check())
            except Exception as e:
                results[name] = False
                error_handler.handle_error(e, f"health_check:{name}")

        error_stats = error_handler.get_error_stats()
        last_error = None
        if error_stats['last_errors']:
            latest_key = max(
                error_stats['last_errors'],
                key=lambda k: error_stats['last_errors'][k]['timestamp']
            )
            last_error = error_stats['last_errors'][latest_key]
            # Tracebacks stay in the logs
            last_error = {k: v for k, v in last_error.items() if k != 'traceback'}

        return HealthStatus(
            healthy=all(results.values()),
            timestamp=datetime.now(timezone.utc),
            checks=results,
            last_error=last_error,
            error_count=error_stats['total_errors']
        )

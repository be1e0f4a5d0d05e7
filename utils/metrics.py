"""
Metrics Collector - In-memory counters for sync runs and provider API calls
"""
from datetime import timedelta
from collections import defaultdict
from threading import Lock
from typing import Dict, List
import statistics
from utils.timezone import get_utc_time


class MetricsCollector:
    """Collects and summarizes metrics for sync operations"""

    def __init__(self, max_entries: int = 10000):
        self.metrics = defaultdict(list)
        self.max_entries = max_entries
        self._lock = Lock()

    def record_sync_duration(self, duration_seconds: float):
        self._add_metric('sync_duration', {'duration': duration_seconds})

    def record_sync_result(self, new: int, updated: int, preserved: int, failed: int):
        self._add_metric('sync_results', {
            'new': new,
            'updated': updated,
            'preserved': preserved,
            'failed': failed
        })

    def record_api_call(self, endpoint: str, duration_ms: float, status_code: int):
        self._add_metric('api_calls', {
            'endpoint': endpoint,
            'duration_ms': duration_ms,
            'status_code': status_code,
            'success': 200 <= status_code < 300
        })

    def record_error(self, error_type: str, error_message: str):
        self._add_metric('errors', {
            'error_type': error_type,
            'error_message': error_message[:200]
        })

    def get_metrics_summary(self, hours: int = 24) -> Dict:
        """Get a summary of metrics for the specified time period"""
        cutoff_time = get_utc_time() - timedelta(hours=hours)
        durations = [m['duration'] for m in self._since('sync_duration', cutoff_time)]
        results = self._since('sync_results', cutoff_time)
        api_calls = self._since('api_calls', cutoff_time)
        errors = self._since('errors', cutoff_time)

        by_endpoint = defaultdict(int)
        for call in api_calls:
            by_endpoint[call['endpoint']] += 1

        error_types = defaultdict(int)
        for error in errors:
            error_types[error['error_type']] += 1

        return {
            'period_hours': hours,
            'sync_metrics': {
                'sync_count': len(durations),
                'average_duration': statistics.mean(durations) if durations else 0,
                'max_duration': max(durations) if durations else 0,
                'new_webinars': sum(r['new'] for r in results),
                'updated_webinars': sum(r['updated'] for r in results),
                'preserved_webinars': sum(r['preserved'] for r in results),
                'failed_upserts': sum(r['failed'] for r in results)
            },
            'api_metrics': {
                'total_calls': len(api_calls),
                'success_rate': (
                    sum(1 for c in api_calls if c['success']) / len(api_calls) * 100
                    if api_calls else 0
                ),
                'average_duration_ms': (
                    statistics.mean(c['duration_ms'] for c in api_calls) if api_calls else 0
                ),
                'by_endpoint': dict(by_endpoint)
            },
            'error_metrics': {
                'total_errors': len(errors),
                'by_type': dict(error_types)
            }
        }

    def _since(self, metric_type: str, cutoff_time) -> List[Dict]:
        with self._lock:
            return [m for m in self.metrics.get(metric_type, []) if m['timestamp'] > cutoff_time]

    def _add_metric(self, metric_type: str, metric_data: Dict):
        metric_data['timestamp'] = get_utc_time()
        with self._lock:
            self.metrics[metric_type].append(metric_data)
            # Sliding window to prevent unbounded growth
            if len(self.metrics[metric_type]) > self.max_entries:
                self.metrics[metric_type] = self.metrics[metric_type][-self.max_entries:]

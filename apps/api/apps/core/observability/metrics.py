"""
Prometheus metrics for the HMIS API.

Every metric is declared once on ``MetricsRegistry`` and reached through
the module-level ``metrics`` instance. Passing a ``CollectorRegistry``
keeps a second instance off the process-wide default registry.
"""
import time
from functools import wraps

from prometheus_client import Counter, Histogram

HTTP_BUCKETS = (0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0)
DB_BUCKETS = (0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0)


class MetricsRegistry:

    def __init__(self, registry=None):
        self._registry = registry

        # HTTP
        self.http_requests_total = self._counter(
            'hmis_http_requests_total', 'Total HTTP requests', ['method', 'status'])
        self.http_request_duration_seconds = self._histogram(
            'hmis_http_request_duration_seconds', 'HTTP request duration in seconds',
            ['method'], buckets=HTTP_BUCKETS)
        self.exceptions_total = self._counter(
            'hmis_exceptions_total', 'Exceptions by type and where they surfaced',
            ['exception_type', 'location'])

        # Persistence gateway; result is commit or rollback
        self.gateway_transactions_total = self._counter(
            'hmis_gateway_transactions_total', 'Gateway transactions by outcome', ['result'])
        self.gateway_query_duration_seconds = self._histogram(
            'hmis_gateway_query_duration_seconds', 'Raw gateway query duration',
            buckets=DB_BUCKETS)

        # Scheduling
        self.appointments_booked_total = self._counter(
            'hmis_appointments_booked_total', 'Booking attempts by outcome', ['result'])
        self.appointment_conflicts_total = self._counter(
            'hmis_appointment_conflicts_total',
            'Booking or reschedule attempts rejected by the conflict checker',
            ['operation'])
        self.appointment_transitions_total = self._counter(
            'hmis_appointment_transitions_total', 'Appointment status transitions',
            ['from_status', 'to_status', 'result'])
        self.conflict_check_duration_seconds = self._histogram(
            'hmis_conflict_check_duration_seconds', 'Duration of appointment conflict checks',
            buckets=DB_BUCKETS[:7])

        # Registration
        self.patient_registrations_total = self._counter(
            'hmis_patient_registrations_total', 'Patient registrations by outcome', ['result'])

        # Medical records and prescriptions; kind is record or prescription
        self.clinical_entries_total = self._counter(
            'hmis_clinical_entries_total', 'Medical records and prescriptions written',
            ['kind', 'action'])

    def _options(self, **options):
        if self._registry is not None:
            options['registry'] = self._registry
        return options

    def _counter(self, name, documentation, labels=()):
        return Counter(name, documentation, labels, **self._options())

    def _histogram(self, name, documentation, labels=(), buckets=Histogram.DEFAULT_BUCKETS):
        return Histogram(name, documentation, labels, **self._options(buckets=buckets))

    @staticmethod
    def track_duration(histogram):
        """
        Decorator observing the wrapped call's wall time on ``histogram``,
        whether it returns or raises.

            @metrics.track_duration(metrics.conflict_check_duration_seconds)
            def find_conflicts(...):
        """
        def decorator(func):
            @wraps(func)
            def wrapper(*args, **kwargs):
                started = time.perf_counter()
                try:
                    return func(*args, **kwargs)
                finally:
                    histogram.observe(time.perf_counter() - started)
            return wrapper
        return decorator


metrics = MetricsRegistry()

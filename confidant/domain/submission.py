"""
Test result submission - health projection first, then alert edges.
"""

from collections.abc import Sequence
from dataclasses import dataclass

from .alerts import ExposureAlertEngine
from .health import HealthStatusEngine
from .models import ResultOutcome, TestResult, as_utc


@dataclass
class ResultSubmission:
    """Orchestrates one submitTestResults call across both engines."""

    health: HealthStatusEngine
    alerts: ExposureAlertEngine

    def submit(self, account_id: str, results: Sequence[TestResult]) -> list[ResultOutcome]:
        """
        Record results for the caller and propagate them to alert edges.

        Raises:
            InvalidArgument: If results are empty or name an unknown infection
        """
        suuid = self.health.deriver.standard(account_id)
        results = [TestResult(r.infection_id, r.positive, as_utc(r.test_date)) for r in results]
        outcomes = self.health.record_results(suuid, results)
        self.alerts.on_test_results(suuid, results)
        return outcomes

"""
Run Execution Service client

Thin wrapper around the service's HTTP API. Every failure (transport error,
non-success status, undecodable body) is raised as FetchFailure so callers
can tell a failed call apart from an empty result.
"""

import asyncio
import logging
from typing import Any, Dict, Optional

import requests

from perfscope.conf import ClientConfig
from perfscope.errors import FetchFailure
from perfscope.models import RunRecord, RunSummary
from perfscope.timeline.parser import parse_trace

logger = logging.getLogger(__name__)


class RunServiceClient:
    """
    Client for the Run Execution Service.

    Args:
        config (Optional[ClientConfig]): Backend URL and timeout, read from the
            environment when omitted.
        session (Optional[requests.Session]): Session to reuse, mainly for tests.

    Example:
        >>> client = RunServiceClient(ClientConfig(base_url="http://localhost:8080"))
        >>> record = client.submit_run({"workload": {"rps": 4}})  # doctest: +SKIP
    """

    def __init__(
        self,
        config: Optional[ClientConfig] = None,
        session: Optional[requests.Session] = None,
    ):
        self.config = config or ClientConfig.from_env()
        self.session = session or requests.Session()
        self.session.headers.update({"Accept": "application/json"})

    def _url(self, path: str) -> str:
        return f"{self.config.base_url}{path}"

    def _request(self, method: str, path: str, **kwargs) -> Any:
        url = self._url(path)
        logger.debug(f"{method} {url}")
        try:
            response = self.session.request(
                method, url, timeout=self.config.timeout, **kwargs
            )
        except requests.RequestException as e:
            logger.error(f"{method} {url} failed: {e}")
            raise FetchFailure(str(e), url=url) from e

        if not response.ok:
            message = self._error_message(response)
            logger.error(f"{method} {url} returned {response.status_code}: {message}")
            raise FetchFailure(message, url=url, status_code=response.status_code)

        try:
            return response.json()
        except ValueError as e:
            raise FetchFailure(
                f"Response is not valid JSON: {e}",
                url=url,
                status_code=response.status_code,
            ) from e

    @staticmethod
    def _error_message(response: requests.Response) -> str:
        try:
            body = response.json()
        except ValueError:
            body = None
        if isinstance(body, dict) and body.get("error"):
            return str(body["error"])
        return response.reason or f"HTTP {response.status_code}"

    # ------------------------------------------------------------------
    # Runs
    # ------------------------------------------------------------------

    def submit_run(self, scenario: Dict[str, Any]) -> RunRecord:
        """
        Submit a scenario and return the executed run.

        The detailed breakdown is fetched separately when the response does not
        carry it inline.

        Raises:
            FetchFailure: If the service call fails or the response has no run id.
        """
        data = self._request("POST", "/v1/runs", json={"scenario": scenario})
        if not isinstance(data, dict) or not data.get("run_id"):
            raise FetchFailure("Run response has no run_id", url=self._url("/v1/runs"))

        run_id = str(data["run_id"])
        breakdown = data.get("breakdown")
        if breakdown is None:
            breakdown = self.fetch_breakdown(run_id)
        artifacts = data.get("artifacts") or {}

        logger.info(f"Run {run_id} completed")
        return RunRecord(
            run_id=run_id,
            summary=RunSummary.from_payload(data.get("summary")),
            breakdown=breakdown,
            trace_url=artifacts.get("trace"),
            scenario=scenario,
        )

    def fetch_breakdown(self, run_id: str) -> Dict[str, Any]:
        return self._request("GET", f"/v1/runs/{run_id}/breakdown")

    def fetch_trace(self, run_id: str) -> Any:
        """Raw trace payload of a simulated run, ready for parse_trace."""
        return self._request("GET", f"/v1/runs/{run_id}/trace")

    def fetch_spans(self, run_id: str):
        return parse_trace(self.fetch_trace(run_id))

    # ------------------------------------------------------------------
    # Imported real traces
    # ------------------------------------------------------------------

    def fetch_real_trace(self, trace_id: str) -> Any:
        return self._request("GET", f"/v1/realtraces/{trace_id}/trace")

    def fetch_real_metrics(self, trace_id: str) -> Dict[str, Any]:
        return self._request("GET", f"/v1/realtraces/{trace_id}/metrics")

    # ------------------------------------------------------------------
    # Sweep integration
    # ------------------------------------------------------------------

    async def execute_run(self, scenario: Dict[str, Any]) -> RunRecord:
        """Async submit_run, usable as the ``execute_run`` of a sweep."""
        return await asyncio.to_thread(self.submit_run, scenario)

    def close(self):
        self.session.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

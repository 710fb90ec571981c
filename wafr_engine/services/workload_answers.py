"""Client for the workload answer-tracking REST service.

Lists the answers already recorded for a workload so that analysis results can
reuse the service's question and choice ids. Uses httpx for async requests and
follows ``NextToken`` pagination until the listing is exhausted.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

import httpx

from wafr_engine.core.errors import TaxonomyUnavailableError
from wafr_engine.core.logging import get_logger

logger = get_logger(__name__)


@dataclass
class WorkloadAnswers:
    """All answer summaries of one workload and lens."""

    workload_id: str
    answer_summaries: list[dict[str, Any]] = field(default_factory=list)
    lens_alias: str | None = None
    lens_arn: str | None = None


class WorkloadAnswersClient:
    """Paginated listing of a workload's recorded answers."""

    def __init__(
        self,
        base_url: str,
        auth_token: str = "",
        lens_alias: str = "wellarchitected",
        timeout: float = 30,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.lens_alias = lens_alias
        self.timeout = timeout
        self._transport = transport
        self._headers = {"Accept": "application/json"}
        if auth_token:
            self._headers["Authorization"] = f"Bearer {auth_token}"

    async def list_answers(self, workload_id: str) -> WorkloadAnswers:
        """
        Collect every answer page of a workload.

        An unconfigured service or an empty workload id yields an empty listing.

        Raises:
            TaxonomyUnavailableError: If any page request fails
        """
        answers = WorkloadAnswers(workload_id=workload_id)
        if not self.base_url or not workload_id:
            return answers

        url = f"{self.base_url}/workloads/{workload_id}/answers"
        next_token: str | None = None
        pages = 0

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                while True:
                    params = {"LensAlias": self.lens_alias}
                    if next_token:
                        params["NextToken"] = next_token

                    resp = await client.get(url, headers=self._headers, params=params)
                    resp.raise_for_status()
                    page = resp.json()
                    pages += 1

                    answers.answer_summaries.extend(page.get("AnswerSummaries") or [])
                    if page.get("LensAlias"):
                        answers.lens_alias = page["LensAlias"]
                    if page.get("LensArn"):
                        answers.lens_arn = page["LensArn"]

                    next_token = page.get("NextToken")
                    if not next_token:
                        break
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"Error fetching answers of workload {workload_id}: {e}")
            raise TaxonomyUnavailableError(
                "Failed to fetch Well-Architected answers", cause=e
            ) from e

        logger.info(
            f"Fetched {len(answers.answer_summaries)} answers for workload {workload_id} "
            f"in {pages} page(s)"
        )
        return answers

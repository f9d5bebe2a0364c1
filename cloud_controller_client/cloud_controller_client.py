import asyncio
from typing import Any, Awaitable, Callable, Optional, Tuple

import aiohttp
from loguru import logger

from cloud_controller_client import status_mappers
from cloud_controller_client.models import (
    ClientConfig,
    OperationReference,
    OperationStatus,
    WaitOutcome,
    WaitPolicy,
)
from cloud_controller_client.pager import Pager
from cloud_controller_client.waiter import AsyncOperationWaiter, PollFn

# Staging gets a longer ceiling than other operations
STAGING_TIMEOUT = 900.0  # 15 minutes


class CloudControllerClient:
    def __init__(
        self,
        config: ClientConfig,
        waiter: Optional[AsyncOperationWaiter] = None,
        on_status_change: Optional[Callable[[OperationStatus], Awaitable[Any]]] = None,
    ):
        self.config = config
        self.base_url = config.api_url.rstrip("/")
        if waiter is not None and on_status_change is not None:
            raise ValueError("Pass on_status_change to the waiter, not to the client, when supplying a waiter")
        self.waiter = waiter or AsyncOperationWaiter(on_status_change=on_status_change)
        self.logger = logger
        self._session: Optional[aiohttp.ClientSession] = None

    async def __aenter__(self) -> "CloudControllerClient":
        headers = {"Accept": "application/json"}
        if self.config.access_token:
            headers["Authorization"] = f"bearer {self.config.access_token}"

        self._session = aiohttp.ClientSession(
            headers=headers,
            timeout=aiohttp.ClientTimeout(total=self.config.request_timeout),
        )
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def close(self) -> None:
        if self._session is not None:
            await self._session.close()
            self._session = None

    @property
    def session(self) -> aiohttp.ClientSession:
        if self._session is None:
            raise RuntimeError("Client session is not open, use 'async with CloudControllerClient(...)'")
        return self._session

    async def _request(
        self, method: str, path: str, params: Optional[dict] = None
    ) -> Tuple[Optional[dict], Any]:
        """Sends one request and returns the decoded body (if any) and the response headers"""
        url = f"{self.base_url}{path}"

        try:
            async with self.session.request(method, url, params=params) as response:
                response.raise_for_status()

                body = None
                if response.status != 204 and response.content_type == "application/json":
                    body = await response.json()
                return body, response.headers
        except aiohttp.ClientResponseError as e:
            self.logger.error(f"HTTP error {e.status} at {method} {url}: {e.message}")
            raise
        except aiohttp.ClientError as e:
            self.logger.error(f"Request {method} {url} failed: {e}")
            raise

    async def _get(self, path: str, params: Optional[dict] = None) -> dict:
        body, _ = await self._request("GET", path, params=params)
        return body or {}

    async def get_job_status(self, job_id: OperationReference) -> OperationStatus:
        return status_mappers.v2_job_status(await self._get(f"/v2/jobs/{job_id}"))

    async def get_job_v3_status(self, job_id: OperationReference) -> OperationStatus:
        return status_mappers.v3_job_status(await self._get(f"/v3/jobs/{job_id}"))

    async def get_service_instance_status(self, service_instance_id: OperationReference) -> OperationStatus:
        return status_mappers.service_instance_status(
            await self._get(f"/v2/service_instances/{service_instance_id}")
        )

    async def get_build_status(self, build_id: OperationReference) -> OperationStatus:
        return status_mappers.build_status(await self._get(f"/v3/builds/{build_id}"))

    async def get_package_status(self, package_id: OperationReference) -> OperationStatus:
        return status_mappers.package_status(await self._get(f"/v3/packages/{package_id}"))

    async def delete_resource(self, resource: str, guid: str) -> Optional[OperationReference]:
        """Deletes a v2 resource asynchronously. Returns the job GUID, or None if the deletion finished synchronously."""
        body, _ = await self._request(
            "DELETE", f"/v2/{resource}/{guid}", params={"async": "true"}
        )
        if not body:
            return None
        return status_mappers.job_reference_from_v2(body)

    async def delete_resource_v3(self, resource: str, guid: str) -> OperationReference:
        _, headers = await self._request("DELETE", f"/v3/{resource}/{guid}")
        return status_mappers.job_reference_from_location(headers.get("Location"))

    def list_resources(self, path: str, params: Optional[dict] = None) -> Pager:
        async def fetch_page(page: int) -> dict:
            query = dict(params or {})
            query["page"] = page
            if path.startswith("/v3/"):
                query["per_page"] = self.config.results_per_page
            else:
                query["results-per-page"] = self.config.results_per_page
            return await self._get(path, params=query)

        return Pager(fetch_page)

    async def _wait(
        self,
        reference: OperationReference,
        poll_fn: PollFn,
        policy: Optional[WaitPolicy],
        cancel_event: Optional[asyncio.Event],
    ) -> WaitOutcome:
        return await self.waiter.wait(reference, poll_fn, policy or WaitPolicy(), cancel_event)

    async def wait_for_job(
        self,
        job_id: OperationReference,
        policy: Optional[WaitPolicy] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> WaitOutcome:
        return await self._wait(job_id, self.get_job_status, policy, cancel_event)

    async def wait_for_job_v3(
        self,
        job_id: OperationReference,
        policy: Optional[WaitPolicy] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> WaitOutcome:
        return await self._wait(job_id, self.get_job_v3_status, policy, cancel_event)

    async def wait_for_service_instance(
        self,
        service_instance_id: OperationReference,
        policy: Optional[WaitPolicy] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> WaitOutcome:
        return await self._wait(
            service_instance_id, self.get_service_instance_status, policy, cancel_event
        )

    async def wait_for_build(
        self,
        build_id: OperationReference,
        policy: Optional[WaitPolicy] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> WaitOutcome:
        policy = policy or WaitPolicy(overall_timeout=STAGING_TIMEOUT)
        return await self._wait(build_id, self.get_build_status, policy, cancel_event)

    async def wait_for_package(
        self,
        package_id: OperationReference,
        policy: Optional[WaitPolicy] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> WaitOutcome:
        return await self._wait(package_id, self.get_package_status, policy, cancel_event)

    async def delete_and_wait(
        self,
        resource: str,
        guid: str,
        policy: Optional[WaitPolicy] = None,
        v3: bool = False,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> None:
        """Delete a resource and block until the deletion job finishes.

        Raises OperationFailed if the job fails, WaitTimedOut if it does not
        finish within the policy's timeout and WaitCancelled if `cancel_event` is set first.
        """
        if v3:
            job_id = await self.delete_resource_v3(resource, guid)
            outcome = await self.wait_for_job_v3(job_id, policy, cancel_event)
        else:
            job_id = await self.delete_resource(resource, guid)
            if job_id is None:
                return
            outcome = await self.wait_for_job(job_id, policy, cancel_event)

        outcome.raise_for_outcome()
        self.logger.info(f"Deleted {resource} {guid}")

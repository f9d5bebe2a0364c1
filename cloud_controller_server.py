import random
import uuid
from datetime import datetime

from aiohttp import web
from loguru import logger


class CloudControllerServer:
    """Minimal Cloud Controller stand-in serving asynchronous jobs and paged collections"""

    def __init__(
        self,
        completion_time: float = 10.0,
        error_rate: float = 0.1,
        app_count: int = 7,
        sync_deletes: bool = False,
    ):
        self.completion_time = completion_time
        self.error_rate = error_rate
        self.app_count = app_count
        self.sync_deletes = sync_deletes
        self.jobs = {}
        self.service_instances = {}
        self.builds = {}
        self.packages = {}
        self.deleted = []
        self.app = web.Application()
        self.app.router.add_delete("/v2/{resource}/{guid}", self.handle_delete_v2)
        self.app.router.add_delete("/v3/{resource}/{guid}", self.handle_delete_v3)
        self.app.router.add_get("/v2/jobs/{guid}", self.handle_job_v2)
        self.app.router.add_get("/v3/jobs/{guid}", self.handle_job_v3)
        self.app.router.add_get("/v2/service_instances/{guid}", self.handle_service_instance)
        self.app.router.add_get("/v3/builds/{guid}", self.handle_build)
        self.app.router.add_get("/v3/packages/{guid}", self.handle_package)
        self.app.router.add_get("/v2/apps", self.handle_list_apps_v2)
        self.app.router.add_get("/v3/apps", self.handle_list_apps_v3)
        self.logger = logger

    def _create_job(self) -> str:
        guid = str(uuid.uuid4())
        self.jobs[guid] = {
            "created_at": datetime.now(),
            "fails": random.random() < self.error_rate,
        }
        return guid

    def _progress(self, record: dict) -> str:
        elapsed = (datetime.now() - record["created_at"]).total_seconds()
        if elapsed < self.completion_time:
            return "queued" if elapsed < self.completion_time / 4 else "running"
        return "failed" if record["fails"] else "finished"

    async def handle_delete_v2(self, request):
        resource, guid = request.match_info["resource"], request.match_info["guid"]
        self.deleted.append((resource, guid))

        if self.sync_deletes or request.query.get("async") != "true":
            self.logger.info(f"Deleted {resource} {guid} synchronously")
            return web.Response(status=204)

        job_id = self._create_job()
        self.logger.info(f"Queued deletion of {resource} {guid} as job {job_id}")
        return web.json_response(
            {
                "metadata": {"guid": job_id, "url": f"/v2/jobs/{job_id}"},
                "entity": {"guid": job_id, "status": "queued"},
            },
            status=202,
        )

    async def handle_delete_v3(self, request):
        resource, guid = request.match_info["resource"], request.match_info["guid"]
        self.deleted.append((resource, guid))

        job_id = self._create_job()
        self.logger.info(f"Queued deletion of {resource} {guid} as job {job_id}")
        return web.Response(status=202, headers={"Location": f"{request.url.origin()}/v3/jobs/{job_id}"})

    async def handle_job_v2(self, request):
        job_id = request.match_info["guid"]
        record = self.jobs.get(job_id)
        if record is None:
            return web.json_response(
                {"code": 10000, "description": "Unknown request", "error_code": "CF-NotFound"},
                status=404,
            )

        status = self._progress(record)
        self.logger.info(f"Returning {status} status for job {job_id}")
        entity = {"guid": job_id, "status": status}
        if status == "failed":
            entity["error_details"] = {
                "code": 10001,
                "description": "quota exceeded",
                "error_code": "CF-QuotaExceeded",
            }
        return web.json_response({"metadata": {"guid": job_id}, "entity": entity})

    async def handle_job_v3(self, request):
        job_id = request.match_info["guid"]
        record = self.jobs.get(job_id)
        if record is None:
            return web.json_response(
                {"errors": [{"code": 10010, "title": "CF-ResourceNotFound", "detail": "Job not found"}]},
                status=404,
            )

        status = self._progress(record)
        self.logger.info(f"Returning {status} status for job {job_id}")
        body = {"guid": job_id, "operation": "app.delete", "errors": []}
        if status == "failed":
            body["state"] = "FAILED"
            body["errors"] = [
                {"code": 10008, "title": "CF-UnprocessableEntity", "detail": "quota exceeded"}
            ]
        elif status == "finished":
            body["state"] = "COMPLETE"
        else:
            body["state"] = "PROCESSING"
        return web.json_response(body)

    async def handle_service_instance(self, request):
        guid = request.match_info["guid"]
        record = self._record(self.service_instances, guid)

        state = {"queued": "in progress", "running": "in progress", "finished": "succeeded"}.get(
            self._progress(record), "failed"
        )
        self.logger.info(f"Returning last operation {state} for service instance {guid}")
        last_operation = {"type": "create", "state": state, "description": ""}
        if state == "failed":
            last_operation["description"] = "service broker rejected the request"
        return web.json_response(
            {"metadata": {"guid": guid}, "entity": {"name": "test-service-instance", "last_operation": last_operation}}
        )

    def _record(self, records: dict, guid: str) -> dict:
        return records.setdefault(
            guid, {"created_at": datetime.now(), "fails": random.random() < self.error_rate}
        )

    async def handle_build(self, request):
        guid = request.match_info["guid"]
        progress = self._progress(self._record(self.builds, guid))

        body = {"guid": guid, "error": None}
        if progress == "failed":
            body["state"] = "FAILED"
            body["error"] = "StagingError - Staging error: staging failed"
        elif progress == "finished":
            body["state"] = "STAGED"
        else:
            body["state"] = "STAGING"
        self.logger.info(f"Returning {body['state']} for build {guid}")
        return web.json_response(body)

    async def handle_package(self, request):
        guid = request.match_info["guid"]
        progress = self._progress(self._record(self.packages, guid))

        # Failing packages expire before processing finishes
        state = {"failed": "EXPIRED", "finished": "READY"}.get(progress, "PROCESSING_UPLOAD")
        self.logger.info(f"Returning {state} for package {guid}")
        return web.json_response({"guid": guid, "type": "bits", "state": state})

    def _page(self, page: int, per_page: int) -> tuple:
        total_pages = max(1, -(-self.app_count // per_page))
        start = (page - 1) * per_page
        names = [f"app-{index}" for index in range(start, min(start + per_page, self.app_count))]
        return total_pages, names

    async def handle_list_apps_v2(self, request):
        page = int(request.query.get("page", 1))
        per_page = int(request.query.get("results-per-page", 50))
        total_pages, names = self._page(page, per_page)
        return web.json_response(
            {
                "total_results": self.app_count,
                "total_pages": total_pages,
                "next_url": f"/v2/apps?page={page + 1}" if page < total_pages else None,
                "resources": [{"metadata": {"guid": name}, "entity": {"name": name}} for name in names],
            }
        )

    async def handle_list_apps_v3(self, request):
        page = int(request.query.get("page", 1))
        per_page = int(request.query.get("per_page", 50))
        total_pages, names = self._page(page, per_page)
        return web.json_response(
            {
                "pagination": {
                    "total_results": self.app_count,
                    "total_pages": total_pages,
                    "next": {"href": f"/v3/apps?page={page + 1}"} if page < total_pages else None,
                },
                "resources": [{"guid": name, "name": name} for name in names],
            }
        )

    async def start(self, port: int = 8080):
        runner = web.AppRunner(self.app)
        await runner.setup()
        site = web.TCPSite(runner, "localhost", port)
        await site.start()
        self.logger.info(f"Server started on port {port}")
        return site

import random
import uuid
from datetime import datetime
from typing import Any, Optional

from aiohttp import web
from loguru import logger

GRAPH_TYPES = ("dependency", "call", "domain", "parse", "supermodel")

SAMPLE_GRAPH = {
    "nodes": [
        {"id": "src/app.py", "labels": ["File"]},
        {"id": "src/util.py", "labels": ["File"]},
    ],
    "relationships": [
        {"type": "IMPORTS", "startNode": "src/app.py", "endNode": "src/util.py"}
    ],
}


def _sample_result(graph_type: str) -> dict[str, Any]:
    if graph_type == "domain":
        return {"domains": [{"name": "Core", "files": ["src/app.py", "src/util.py"]}]}
    if graph_type == "supermodel":
        return {
            "repo": "example",
            "version": "1.0",
            "graph": SAMPLE_GRAPH,
            "domains": [{"name": "Core"}],
        }
    return {"graph": SAMPLE_GRAPH, "stats": {"nodeCount": 2, "relationshipCount": 1}}


class SupermodelServer:
    def __init__(
        self,
        completion_time: float = 10.0,
        error_rate: float = 0.1,
        retry_after: Optional[float] = 1.0,
    ):
        self.completion_time = completion_time
        self.error_rate = error_rate
        self.retry_after = retry_after
        self.jobs: dict[str, dict[str, Any]] = {}
        self.request_count = 0
        self.last_headers: dict[str, str] = {}
        self.runner: Optional[web.AppRunner] = None
        self.app = web.Application()
        for graph_type in GRAPH_TYPES:
            self.app.router.add_post(f"/v1/graphs/{graph_type}", self.handle_graph)
        self.logger = logger

    def _get_or_create_job(self, key: str, graph_type: str) -> dict[str, Any]:
        job = self.jobs.get(key)
        if job is None:
            job = {
                "job_id": str(uuid.uuid4()),
                "graph_type": graph_type,
                "start_time": datetime.now(),
                "polls": 0,
                "will_fail": random.random() < self.error_rate,
            }
            self.jobs[key] = job
            self.logger.info(f"Created {graph_type} job {job['job_id']} for key {key}")
        return job

    async def handle_graph(self, request: web.Request) -> web.Response:
        self.request_count += 1
        self.last_headers = dict(request.headers)
        key = request.headers.get("Idempotency-Key")
        if not key:
            return web.json_response({"error": "Idempotency-Key header is required"}, status=400)

        await request.read()
        graph_type = request.path.rsplit("/", 1)[-1]
        job = self._get_or_create_job(key, graph_type)
        job["polls"] += 1
        elapsed = (datetime.now() - job["start_time"]).total_seconds()

        if elapsed < self.completion_time:
            status = "pending" if job["polls"] == 1 else "processing"
            self.logger.info(f"Returning {status} status (elapsed: {elapsed:.1f}s)")
            body: dict[str, Any] = {"status": status, "jobId": job["job_id"]}
            if self.retry_after is not None:
                body["retryAfter"] = self.retry_after
            return web.json_response(body, status=202)

        if job["will_fail"]:
            self.logger.info("Returning failed status")
            return web.json_response(
                {"status": "failed", "jobId": job["job_id"], "error": "bad archive"}
            )

        self.logger.info("Returning completed status")
        return web.json_response(
            {
                "status": "completed",
                "jobId": job["job_id"],
                "result": _sample_result(job["graph_type"]),
            }
        )

    async def start(self, port: int = 8080) -> int:
        """Starts serving on localhost and returns the bound port"""
        self.runner = web.AppRunner(self.app)
        await self.runner.setup()
        site = web.TCPSite(self.runner, "127.0.0.1", port)
        await site.start()
        bound_port = self.runner.addresses[0][1]
        self.logger.info(f"Server started on port {bound_port}")
        return bound_port

    async def stop(self) -> None:
        if self.runner is not None:
            await self.runner.cleanup()
            self.runner = None

import asyncio
import random
from typing import Any, Dict, List, Optional

from aiohttp import web
from loguru import logger

DEFAULT_RESULT = {"video": {"url": "https://x/y.mp4"}}
IN_PROGRESS_DETAIL = "Request is still in progress"


class ProviderServer:
    """Stand-in for a fal-style queue.

    POST /{model} submits, GET /{model}/requests/{id}/status reports progress
    and GET /{model}/requests/{id} hands out the result once it is ready.
    """

    def __init__(
        self,
        pending_polls: int = 2,
        result: Optional[Dict[str, Any]] = None,
        error_rate: float = 0.0,
        fail_reason: Optional[str] = None,
        submit_status: int = 200,
        submit_error: str = "invalid prompt",
        immediate: bool = False,
        request_id: str = "abc",
        result_lag: int = 0,
        raw_submit: Optional[str] = None,
        raw_poll: Optional[str] = None,
    ):
        self.pending_polls = pending_polls
        self.result = result or DEFAULT_RESULT
        self.error_rate = error_rate
        self.fail_reason = fail_reason
        self.submit_status = submit_status
        self.submit_error = submit_error
        self.immediate = immediate
        self.request_id = request_id
        # result fetches answered "still in progress" after the status says COMPLETED
        self.result_lag = result_lag
        self.raw_submit = raw_submit
        self.raw_poll = raw_poll
        self.submitted: List[Dict[str, Any]] = []
        self.poll_times: List[float] = []
        self.result_fetches = 0
        self.completed = False
        self.app = web.Application()
        self.app.router.add_post("/{model:.+}", self.handle_submit)
        self.app.router.add_get(
            "/{model:.+}/requests/{request_id}/status", self.handle_status
        )
        self.app.router.add_get("/{model:.+}/requests/{request_id}", self.handle_result)
        self.logger = logger

    @property
    def poll_count(self) -> int:
        return len(self.poll_times)

    async def handle_submit(self, request):
        body = await request.json()
        self.submitted.append(body)

        if self.submit_status >= 300:
            self.logger.info(f"Rejecting submit with {self.submit_status}")
            return web.json_response(
                {"error": self.submit_error}, status=self.submit_status
            )

        if self.raw_submit is not None:
            return web.Response(text=self.raw_submit, content_type="text/plain")

        if self.immediate:
            self.logger.info("Returning result on submit")
            return web.json_response(self.result)

        self.logger.info(f"Queued {request.match_info['model']} as {self.request_id}")
        return web.json_response({"request_id": self.request_id})

    async def handle_status(self, request):
        self.poll_times.append(asyncio.get_running_loop().time())

        if request.match_info["request_id"] != self.request_id:
            return web.json_response({"detail": "Request not found"}, status=404)

        if self.raw_poll is not None:
            return web.Response(text=self.raw_poll, content_type="text/plain")

        if self.fail_reason is not None or random.random() < self.error_rate:
            self.logger.info("Returning failed status")
            return web.json_response(
                {"status": "FAILED", "error": self.fail_reason or "generation failed"}
            )

        if self.poll_count <= self.pending_polls:
            self.logger.info(f"Returning in-progress status (poll {self.poll_count})")
            return web.json_response(
                {"status": "IN_PROGRESS", "request_id": self.request_id}
            )

        self.completed = True
        self.logger.info("Returning completed status")
        return web.json_response({"status": "COMPLETED", "request_id": self.request_id})

    async def handle_result(self, request):
        self.result_fetches += 1

        if request.match_info["request_id"] != self.request_id:
            return web.json_response({"detail": "Request not found"}, status=404)

        if not self.completed or self.result_lag > 0:
            if self.completed:
                self.result_lag -= 1
            self.logger.info("Result not ready yet")
            return web.json_response({"detail": IN_PROGRESS_DETAIL}, status=400)

        self.logger.info("Returning completed result")
        return web.json_response(self.result)

    async def start(self, port: int = 8080):
        runner = web.AppRunner(self.app)
        await runner.setup()
        site = web.TCPSite(runner, "localhost", port)
        await site.start()
        self.logger.info(f"Server started on port {port}")
        return site

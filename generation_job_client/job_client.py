import asyncio
import json
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Callable, Dict, Optional, Union

import aiohttp
from loguru import logger
from generation_job_client.adapters.base import ProviderAdapter
from generation_job_client.errors import ProviderError
from generation_job_client.models import (
    HttpRequestSpec,
    ImmediateResult,
    JobHandle,
    JobRequest,
    OutcomeStatus,
    PollOutcome,
    PollPolicy,
)

TRANSIENT_ERRORS = (aiohttp.ClientConnectionError, asyncio.TimeoutError)
CLOSE_GRACE_PERIOD = 1.0  # seconds


def _error_message(status: int, body: str) -> str:
    """Best-effort human message from a provider error body"""
    try:
        parsed = json.loads(body)
    except ValueError:
        return f"provider returned HTTP {status}"
    if isinstance(parsed, dict):
        for key in ("error", "detail", "message"):
            value = parsed.get(key)
            if isinstance(value, dict):
                value = value.get("message")
            if isinstance(value, str) and value:
                return value
    return f"provider returned HTTP {status}"


class LongRunningJobClient:
    def __init__(
        self,
        policy: Optional[PollPolicy] = None,
        session: Optional[aiohttp.ClientSession] = None,
        on_status_change: Optional[Callable[[PollOutcome], Any]] = None,
    ):
        self.policy = policy or PollPolicy()
        self.session = session
        self.logger = logger
        self.on_status_change = on_status_change

    @asynccontextmanager
    async def _session_scope(self) -> AsyncIterator[aiohttp.ClientSession]:
        """Reuse the injected session, or open one that lives for this call only"""
        if self.session is not None:
            yield self.session
            return
        async with aiohttp.ClientSession() as session:
            yield session

    async def _send(
        self, session: aiohttp.ClientSession, spec: HttpRequestSpec
    ) -> Dict[str, Any]:
        """Performs one HTTP call and decodes its JSON body"""
        async with session.request(
            spec.method, spec.url, headers=spec.headers, json=spec.json_body
        ) as response:
            body = await response.text()

            if response.status >= 300:
                message = _error_message(response.status, body)
                raise ProviderError(response.status, body, message)

            try:
                data = json.loads(body)
            except ValueError:
                raise ProviderError(response.status, body, "response body is not valid JSON")

            if not isinstance(data, dict):
                raise ProviderError(response.status, body, "response body is not a JSON object")
            return data

    async def _submit_once(
        self,
        session: aiohttp.ClientSession,
        request: JobRequest,
        adapter: ProviderAdapter,
    ) -> Union[JobHandle, ImmediateResult]:
        spec = adapter.build_submit_request(request)
        self.logger.info(f"[{adapter.name}] Submitting {request.media_kind.value} job to {spec.url}")
        try:
            data = await self._send(session, spec)
        except ProviderError as e:
            self.logger.error(f"HTTP error {e.status} at {spec.url}: {e.message}")
            raise
        submitted = adapter.parse_submit_response(request, data)

        if isinstance(submitted, JobHandle):
            self.logger.info(f"[{adapter.name}] Queued: request_id={submitted.request_id}")
        else:
            self.logger.info(f"[{adapter.name}] Finished on submit")
        return submitted

    async def _poll_once(
        self,
        session: aiohttp.ClientSession,
        handle: JobHandle,
        adapter: ProviderAdapter,
    ) -> PollOutcome:
        """Checks the status once, fetching the result too if the job just finished"""
        spec = adapter.build_poll_request(handle)
        try:
            data = await self._send(session, spec)
            result_spec = adapter.build_result_request(handle, data)
            if result_spec is None:
                return adapter.parse_poll_response(handle, data)

            spec = result_spec
            self.logger.debug(f"[{adapter.name}] Fetching result from {spec.url}")
            result = await self._send(session, spec)
            return adapter.parse_result_response(handle, result)
        except ProviderError as e:
            outcome = adapter.classify_poll_error(handle, e)
            if outcome is None:
                self.logger.error(f"HTTP error {e.status} at {spec.url}: {e.message}")
                raise
            self.logger.debug(
                f"[{adapter.name}] HTTP {e.status} read as {outcome.status.value}: {e.message}"
            )
            return outcome

    async def submit(
        self, request: JobRequest, adapter: ProviderAdapter
    ) -> Union[JobHandle, ImmediateResult]:
        """Starts a job, returning a handle to poll or the finished artifact"""
        async with self._session_scope() as session:
            return await self._submit_once(session, request, adapter)

    async def poll(self, handle: JobHandle, adapter: ProviderAdapter) -> PollOutcome:
        """Checks on a running job once"""
        async with self._session_scope() as session:
            return await self._poll_once(session, handle, adapter)

    async def _handle_status_change(
        self, outcome: PollOutcome, last_status: Optional[OutcomeStatus]
    ) -> None:
        """Invoke the status change callback if the status has changed"""
        if last_status != outcome.status and self.on_status_change is not None:
            self.logger.debug(f"Job status changed to {outcome.status.value}")
            await self.on_status_change(outcome)

    async def _wait_before_poll(
        self,
        attempt: int,
        delay: float,
        cancel_event: Optional[asyncio.Event],
    ) -> bool:
        """Suspends until the next poll is due; returns True if cancelled meanwhile"""
        self.logger.debug(f"Waiting {delay:.2f}s before poll attempt {attempt}")

        if cancel_event is None:
            await asyncio.sleep(delay)
            return False
        if cancel_event.is_set():
            return True
        try:
            await asyncio.wait_for(cancel_event.wait(), timeout=delay)
        except asyncio.TimeoutError:
            return False
        return True

    async def run_to_completion(
        self,
        request: JobRequest,
        adapter: ProviderAdapter,
        policy: Optional[PollPolicy] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> PollOutcome:
        """Submit a job and poll it until it succeeds, fails, times out or is cancelled"""
        policy = policy or self.policy
        loop = asyncio.get_running_loop()
        start_time = loop.time()
        deadline = start_time + policy.timeout if policy.timeout is not None else None

        def finish(outcome: PollOutcome, attempts: int) -> PollOutcome:
            return outcome.model_copy(
                update={"attempts": attempts, "elapsed_time": loop.time() - start_time}
            )

        async with self._session_scope() as session:
            submitted = await self._submit_once(session, request, adapter)
            if isinstance(submitted, ImmediateResult):
                outcome = PollOutcome.succeeded(
                    submitted.media_kind, submitted.urls, submitted.raw_response
                )
                await self._handle_status_change(outcome, None)
                return finish(outcome, 0)

            handle = submitted
            attempt = 0
            last_status: Optional[OutcomeStatus] = None

            while attempt < policy.max_attempts:
                delay = policy.delay_for(attempt + 1)
                out_of_time = False
                if deadline is not None:
                    remaining = deadline - loop.time()
                    if remaining <= 0:
                        break
                    if delay >= remaining:
                        delay, out_of_time = remaining, True

                if await self._wait_before_poll(attempt + 1, delay, cancel_event):
                    self.logger.info(f"[{adapter.name}] Cancelled: request_id={handle.request_id}")
                    return finish(PollOutcome.cancelled(), attempt)

                # the wait ran into the deadline, no poll is due before it
                if out_of_time or (deadline is not None and loop.time() >= deadline):
                    break

                attempt += 1
                try:
                    outcome = await self._poll_once(session, handle, adapter)
                except TRANSIENT_ERRORS as polling_error:
                    if not policy.tolerate_transient_errors:
                        self.logger.error(f"Error polling status: {polling_error!r}")
                        raise
                    self.logger.warning(
                        f"Poll attempt {attempt} could not reach {adapter.name}, "
                        f"treating as pending: {polling_error!r}"
                    )
                    outcome = PollOutcome.pending()

                await self._handle_status_change(outcome, last_status)
                last_status = outcome.status

                if outcome.is_terminal:
                    self.logger.info(
                        f"[{adapter.name}] {outcome.status.value}: "
                        f"request_id={handle.request_id} after {attempt} polls"
                    )
                    return finish(outcome, attempt)

        self.logger.warning(
            f"[{adapter.name}] Timed out: request_id={handle.request_id} after {attempt} polls"
        )
        return finish(PollOutcome.timeout(), attempt)

    @asynccontextmanager
    async def running(
        self,
        request: JobRequest,
        adapter: ProviderAdapter,
        policy: Optional[PollPolicy] = None,
    ) -> AsyncIterator["RunningJob"]:
        """Run a job in the background for the lifetime of the `async with` block.

        Leaving the block stops polling, whether or not the job finished.
        """
        cancel_event = asyncio.Event()
        task = asyncio.create_task(
            self.run_to_completion(request, adapter, policy, cancel_event)
        )
        job = RunningJob(task, cancel_event)
        try:
            yield job
        except BaseException:
            await job.close()
            raise
        error = await job.close()
        if error is not None:
            raise error


class RunningJob:
    def __init__(self, task: "asyncio.Task[PollOutcome]", cancel_event: asyncio.Event):
        self._task = task
        self._cancel_event = cancel_event
        self._retrieved = False
        self.logger = logger

    @property
    def done(self) -> bool:
        return self._task.done()

    def cancel(self) -> None:
        """Ask the poll loop to stop at its next suspension point"""
        self._cancel_event.set()

    async def wait(self) -> PollOutcome:
        try:
            return await asyncio.shield(self._task)
        finally:
            if self._task.done():
                self._retrieved = True

    async def close(self) -> Optional[BaseException]:
        """Stop polling and wait for the loop to unwind.

        Returns the job's exception if it failed and nobody saw it through
        `wait()`, so the caller can raise it.
        """
        if not self._task.done():
            self._cancel_event.set()
            # a poll may be mid-flight; the loop stops right after it
            await asyncio.wait({self._task}, timeout=CLOSE_GRACE_PERIOD)
        if not self._task.done():
            self._task.cancel()
        await asyncio.gather(self._task, return_exceptions=True)

        if self._retrieved or self._task.cancelled():
            return None
        error = self._task.exception()
        if error is not None:
            self._retrieved = True
            self.logger.error(f"Background job failed: {error!r}")
        return error

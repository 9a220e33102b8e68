import asyncio

from provider_server import ProviderServer
from generation_job_client.adapters.fal import FalQueueAdapter
from generation_job_client.catalogue import build_job
from generation_job_client.config import ProviderKeys
from generation_job_client.job_client import LongRunningJobClient
from generation_job_client.models import BackoffStrategy, PollPolicy


async def status_changed(outcome):
    print(f"Status changed to: {outcome.status.value}")


async def main():
    PORT = 8000
    server = ProviderServer(pending_polls=4, error_rate=0.1)
    await server.start(port=PORT)
    print(f"Server started on http://localhost:{PORT}")

    policy = PollPolicy(
        interval=0.5,
        backoff=BackoffStrategy.exponential,
        max_interval=4.0,
        max_attempts=10,
        jitter=True,
    )

    request, _ = build_job(
        "text-to-video", {"prompt": "a paper boat in the rain"}, ProviderKeys(fal="demo")
    )
    adapter = FalQueueAdapter("demo", base_url=f"http://localhost:{PORT}")
    client = LongRunningJobClient(policy, on_status_change=status_changed)

    try:
        outcome = await client.run_to_completion(request, adapter)
        print(f"Final response: {outcome.to_response()}")
        print(f"Polls: {outcome.attempts}, total time: {outcome.elapsed_time:.3f}s")
    except Exception as e:
        print(f"Error occurred: {e}")

    await asyncio.sleep(1)


if __name__ == "__main__":
    asyncio.run(main())

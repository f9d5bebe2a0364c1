import asyncio
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from cloud_controller_server import CloudControllerServer
from cloud_controller_client.models import ClientConfig, WaitPolicy

BASE_URL_TEMPLATE = "http://localhost:{}"


@pytest_asyncio.fixture
async def server(unused_tcp_port_factory) -> AsyncGenerator[CloudControllerServer, None]:
    """Start and yield a test CloudControllerServer instance on a random port."""
    port = unused_tcp_port_factory()
    server_instance = CloudControllerServer(completion_time=0.5, error_rate=0.0)
    await server_instance.start(port=port)
    try:
        yield server_instance, port
    finally:
        await _cleanup_server(server_instance)


async def _cleanup_server(server_instance: CloudControllerServer):
    """Clean up tasks and stop the server."""
    try:
        tasks = [t for t in asyncio.all_tasks() if t is not asyncio.current_task()]
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
    except Exception as e:
        print(f"Error during cleanup: {e}")
    finally:
        await server_instance.app.shutdown()
        await server_instance.app.cleanup()


@pytest.fixture
def client_config(server) -> ClientConfig:
    _, port = server
    return ClientConfig(api_url=BASE_URL_TEMPLATE.format(port), access_token="test-token", results_per_page=3)


@pytest.fixture
def policy() -> WaitPolicy:
    """Provide a fast polling policy for the tests."""
    return WaitPolicy(initial_interval=0.1, max_interval=0.4, overall_timeout=5.0)


class FakeTimeline:
    """Stands in for the event loop clock and the waiter's sleep."""

    def __init__(self, cancel_after_sleeps=None, early_by=0.0):
        self.now = 0.0
        self.early_by = early_by
        self.sleeps = []
        self.cancel_after_sleeps = cancel_after_sleeps

    def clock(self) -> float:
        return self.now

    async def pause(self, delay, cancel_event) -> bool:
        self.sleeps.append(delay)
        if self.cancel_after_sleeps is not None and len(self.sleeps) >= self.cancel_after_sleeps:
            # Cancellation arrives halfway through this sleep
            self.now += delay / 2
            return True
        self.now += delay - self.early_by
        return False


@pytest.fixture
def timeline() -> FakeTimeline:
    return FakeTimeline()

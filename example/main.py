import asyncio

from cloud_controller_server import CloudControllerServer
from cloud_controller_client.cloud_controller_client import CloudControllerClient
from cloud_controller_client.errors import OperationFailed
from cloud_controller_client.models import ClientConfig, WaitPolicy


async def status_changed(status):
    print(f"Operation state changed to: {status.state.value}")


async def main():
    PORT = 8000
    server = CloudControllerServer(completion_time=20.0, error_rate=0.1)
    await server.start(port=PORT)
    print(f"Server started on http://localhost:{PORT}")

    config = ClientConfig(api_url=f"http://localhost:{PORT}", access_token="example-token")
    policy = WaitPolicy(initial_interval=1.0, max_interval=8.0, overall_timeout=60.0)

    async with CloudControllerClient(config, on_status_change=status_changed) as client:
        apps = await client.list_resources("/v2/apps").collect()
        print(f"Found {len(apps)} applications")

        job_id = await client.delete_resource("apps", apps[0]["metadata"]["guid"])
        outcome = await client.wait_for_job(job_id, policy)
        print(f"Final outcome: {outcome.outcome}")
        print(f"Total time: {outcome.elapsed:.6f}s over {outcome.polls} polls")

        try:
            await client.delete_and_wait("apps", apps[1]["metadata"]["guid"], policy, v3=True)
            print("Second application deleted")
        except TimeoutError as e:
            print(f"Polling timed out: {e}")
        except OperationFailed as e:
            print(f"Deletion failed: {e.error_detail}")

    await asyncio.sleep(1)


if __name__ == "__main__":
    asyncio.run(main())

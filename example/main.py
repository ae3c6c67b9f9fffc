import asyncio
import io
import os
import zipfile

from supermodel_client.api import SupermodelApi
from supermodel_client.errors import JobFailedError, PollingTimeoutError
from supermodel_client.models import AsyncClientConfig, PollingProgress
from supermodel_client.supermodel_client import SupermodelClient
from supermodel_server import SupermodelServer


def build_archive() -> bytes:
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as archive:
        archive.writestr("src/app.py", "from util import helper\n\nhelper()\n")
        archive.writestr("src/util.py", "def helper():\n    return 42\n")
    return buffer.getvalue()


async def progress_changed(progress: PollingProgress):
    print(
        f"Job {progress.job_id}: {progress.status.value} "
        f"(attempt {progress.attempt}/{progress.max_attempts}, {progress.elapsed_ms}ms)"
    )


async def main():
    PORT = 8000
    base_url = os.environ.get("SUPERMODEL_BASE_URL")
    server = None
    if base_url is None:
        server = SupermodelServer(completion_time=5.0, error_rate=0.1, retry_after=1.0)
        await server.start(port=PORT)
        base_url = f"http://127.0.0.1:{PORT}"
        print(f"Server started on {base_url}")

    config = AsyncClientConfig(
        timeout_ms=60000,
        default_retry_interval_ms=2000,
        max_polling_attempts=30,
        on_polling_progress=progress_changed,
    )

    async with SupermodelApi(base_url, api_key=os.environ.get("SUPERMODEL_API_KEY")) as api:
        client = SupermodelClient(api, config)
        try:
            graph = await client.generate_dependency_graph(build_archive())
            print(f"Nodes: {len(graph.graph.nodes)}")
            print(f"Relationships: {len(graph.graph.relationships)}")
        except PollingTimeoutError as e:
            print(f"Polling timed out: {e}")
        except JobFailedError as e:
            print(f"Job failed: {e.error_message}")
        finally:
            if server is not None:
                await server.stop()


if __name__ == "__main__":
    asyncio.run(main())

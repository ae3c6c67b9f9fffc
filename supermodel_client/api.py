from typing import Optional, Type, TypeVar

import aiohttp
from loguru import logger
from pydantic import BaseModel, ValidationError
from supermodel_client.errors import ProtocolViolationError
from supermodel_client.models import (
    AsyncEnvelope,
    CodeGraphEnvelope,
    DomainClassificationResponse,
    SupermodelIR,
)

R = TypeVar("R", bound=BaseModel)


class SupermodelApi:
    """Raw graph endpoints: each call submits the archive once and returns one envelope"""

    def __init__(
        self,
        base_url: str,
        api_key: Optional[str] = None,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.logger = logger
        self._session = session
        self._owns_session = session is None

    async def __aenter__(self) -> "SupermodelApi":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()

    async def _submit_once(
        self,
        graph_type: str,
        result_model: Type[R],
        idempotency_key: str,
        file: bytes,
        headers: Optional[dict[str, str]] = None,
    ) -> AsyncEnvelope[R]:
        """Posts the archive to a graph endpoint and parses the returned envelope"""
        url = f"{self.base_url}/v1/graphs/{graph_type}"
        request_headers = {"Idempotency-Key": idempotency_key}
        if self.api_key:
            request_headers["X-Api-Key"] = self.api_key
        if headers:
            request_headers.update(headers)

        form = aiohttp.FormData()
        form.add_field("file", file, filename="repo.zip", content_type="application/zip")

        try:
            async with self._get_session().post(
                url, data=form, headers=request_headers
            ) as response:
                response.raise_for_status()
                try:
                    data = await response.json(content_type=None)
                except ValueError as e:
                    raise ProtocolViolationError(
                        "unknown", f"Response from {url} is not valid JSON: {e}"
                    ) from e
        except aiohttp.ClientResponseError as e:
            self.logger.error(f"HTTP error {e.status} at {url}: {e.message}")
            raise

        try:
            return AsyncEnvelope[result_model].model_validate(data)
        except ValidationError as e:
            job_id = data.get("jobId", "unknown") if isinstance(data, dict) else "unknown"
            raise ProtocolViolationError(
                job_id, f"Malformed envelope for job {job_id} from {url}: {e}"
            ) from e

    async def generate_dependency_graph(
        self, idempotency_key: str, file: bytes, headers: Optional[dict[str, str]] = None
    ) -> AsyncEnvelope[CodeGraphEnvelope]:
        return await self._submit_once(
            "dependency", CodeGraphEnvelope, idempotency_key, file, headers
        )

    async def generate_call_graph(
        self, idempotency_key: str, file: bytes, headers: Optional[dict[str, str]] = None
    ) -> AsyncEnvelope[CodeGraphEnvelope]:
        return await self._submit_once(
            "call", CodeGraphEnvelope, idempotency_key, file, headers
        )

    async def generate_domain_graph(
        self, idempotency_key: str, file: bytes, headers: Optional[dict[str, str]] = None
    ) -> AsyncEnvelope[DomainClassificationResponse]:
        return await self._submit_once(
            "domain", DomainClassificationResponse, idempotency_key, file, headers
        )

    async def generate_parse_graph(
        self, idempotency_key: str, file: bytes, headers: Optional[dict[str, str]] = None
    ) -> AsyncEnvelope[CodeGraphEnvelope]:
        return await self._submit_once(
            "parse", CodeGraphEnvelope, idempotency_key, file, headers
        )

    async def generate_supermodel_graph(
        self, idempotency_key: str, file: bytes, headers: Optional[dict[str, str]] = None
    ) -> AsyncEnvelope[SupermodelIR]:
        return await self._submit_once(
            "supermodel", SupermodelIR, idempotency_key, file, headers
        )

from typing import Awaitable, Callable, Optional, TypeVar

from loguru import logger
from supermodel_client.api import SupermodelApi
from supermodel_client.models import (
    AsyncClientConfig,
    AsyncEnvelope,
    CodeGraphEnvelope,
    DomainClassificationResponse,
    GraphRequestOptions,
    SupermodelIR,
)
from supermodel_client.polling import generate_idempotency_key, poll_until_complete

T = TypeVar("T")

ApiMethod = Callable[..., Awaitable[AsyncEnvelope[T]]]


class SupermodelClient:
    """Wraps SupermodelApi so each graph call polls until its job finishes"""

    def __init__(self, api: SupermodelApi, config: Optional[AsyncClientConfig] = None):
        self.api = api
        self.config = config or AsyncClientConfig()
        self.logger = logger
        self.generate_idempotency_key = (
            self.config.generate_idempotency_key or generate_idempotency_key
        )

    @property
    def raw_api(self) -> SupermodelApi:
        """The underlying transport, for callers who want to handle envelopes themselves"""
        return self.api

    def _poll_config(self, options: GraphRequestOptions) -> AsyncClientConfig:
        if options.signal is not None:
            return self.config.model_copy(update={"signal": options.signal})
        return self.config

    async def _run(
        self, api_method: ApiMethod, file: bytes, options: Optional[GraphRequestOptions]
    ) -> T:
        options = options or GraphRequestOptions()
        key = options.idempotency_key or self.generate_idempotency_key()
        self.logger.debug(f"Submitting {api_method.__name__} with idempotency key {key}")

        return await poll_until_complete(
            lambda: api_method(idempotency_key=key, file=file, headers=options.headers),
            self._poll_config(options),
        )

    async def generate_dependency_graph(
        self, file: bytes, options: Optional[GraphRequestOptions] = None
    ) -> CodeGraphEnvelope:
        """Generate a dependency graph from a zipped repository"""
        return await self._run(self.api.generate_dependency_graph, file, options)

    async def generate_call_graph(
        self, file: bytes, options: Optional[GraphRequestOptions] = None
    ) -> CodeGraphEnvelope:
        return await self._run(self.api.generate_call_graph, file, options)

    async def generate_domain_graph(
        self, file: bytes, options: Optional[GraphRequestOptions] = None
    ) -> DomainClassificationResponse:
        return await self._run(self.api.generate_domain_graph, file, options)

    async def generate_parse_graph(
        self, file: bytes, options: Optional[GraphRequestOptions] = None
    ) -> CodeGraphEnvelope:
        return await self._run(self.api.generate_parse_graph, file, options)

    async def generate_supermodel_graph(
        self, file: bytes, options: Optional[GraphRequestOptions] = None
    ) -> SupermodelIR:
        """Generate the full Supermodel IR bundle from a zipped repository"""
        return await self._run(self.api.generate_supermodel_graph, file, options)

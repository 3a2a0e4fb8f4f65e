from abc import abstractmethod
import asyncio

from shared.clients.ClientInterface import ClientInterface
from shared.exceptions.pipeline_errors import DimensionMismatchError, ServiceUnavailableError

from shared.helper.HelperConfig import HelperConfig


class EmbedClientInterface(ClientInterface):
    def __init__(self, helper_config: HelperConfig):
        super().__init__(helper_config=helper_config)

        # model and embedding config
        self.embed_model = helper_config.get_string_val("EMBED_MODEL", default="bge-m3")
        self.max_batch_size = int(helper_config.get_number_val("EMBED_MAX_BATCH_SIZE", default=8))
        self.max_concurrency = int(helper_config.get_number_val("EMBED_MAX_CONCURRENCY", default=2))
        configured_dimension = helper_config.get_number_val("EMBED_DIMENSION", default=0)
        self.dimension: int | None = int(configured_dimension) or None
        if self.max_batch_size < 1 or self.max_concurrency < 1:
            raise ValueError("EMBED_MAX_BATCH_SIZE and EMBED_MAX_CONCURRENCY must be >= 1.")

        # one semaphore per client instance, shared by every worker that holds the client
        self._semaphore = asyncio.Semaphore(self.max_concurrency)

    ##########################################
    ################ GETTER ##################
    ##########################################

    ################ GENERAL ##################
    def _get_client_type(self) -> str:
        """
        Returns the type of the client. E.g. "embed"
        """
        return "embed"

    def get_dimension(self) -> int:
        """
        Returns the fixed vector dimension D produced by the configured model.

        Raises:
            RuntimeError: If the dimension is neither configured nor fetched yet.
        """
        if self.dimension is None:
            raise RuntimeError("Embedding dimension unknown. Set EMBED_DIMENSION or call boot() first.")
        return self.dimension

    ################ ENDPOINTS ##################
    @abstractmethod
    def get_endpoint_embedding(self) -> str:
        """
        Returns the endpoint path for embedding requests.

        Returns:
            str: The endpoint path for embedding requests (e.g. "/api/embed")
        """
        pass

    @abstractmethod
    def get_endpoint_model_details(self) -> str:
        """
        Returns the endpoint path for model details requests.

        Returns:
            str: The endpoint path for model details requests (e.g. "/api/show")
        """
        pass

    ################ PAYLOAD BUILDER ##################
    @abstractmethod
    def get_embed_payload(self, texts: list[str]) -> dict:
        """Build the backend-specific request body for an embedding request.

        Args:
            texts (list[str]): The texts to embed.

        Returns:
            dict: JSON-serialisable request body (e.g. {"model": "...", "input": [...]}).
        """
        pass

    @abstractmethod
    def get_model_details_request(self) -> tuple[str, dict | None]:
        """Build the HTTP method and body for the model details request.

        Returns:
            tuple[str, dict | None]: e.g. ("POST", {"name": "bge-m3"})
        """
        pass

    ##########################################
    ################# OTHER ##################
    ##########################################

    @abstractmethod
    def extract_vector_size_from_model_info(self, model_info: dict) -> int:
        """
        Extracts the embedding vector size from the model information response.

        Args:
            model_info (dict): The raw response from the model details endpoint.
        Returns:
            int: The dimension of the embedding vectors produced by the model.
        Raises:
            ValueError: If the vector size cannot be determined.
        """
        pass

    @abstractmethod
    def extract_embeddings_from_response(self, response_data: dict) -> list[list[float]]:
        """Extract embedding vectors from a raw embedding API response.

        Response format differs by backend:
        - Ollama /api/embed: {"embeddings": [[...], [...]]}, already ordered
        - OpenAI-compatible: {"data": [{"embedding": [...], "index": 0}]}, needs sorting

        Args:
            response_data (dict): The parsed JSON response body.

        Returns:
            list[list[float]]: Embedding vectors in the same order as the input texts.

        Raises:
            ValueError: If the response format is invalid or embeddings are empty.
        """
        pass

    ##########################################
    ############### REQUESTS #################
    ##########################################

    async def boot(self) -> None:
        """Open the HTTP client and resolve the vector dimension if it is not configured."""
        await super().boot()
        if self.dimension is None:
            self.dimension = await self.do_fetch_embedding_vector_size()
            self.logging.info(
                "Embedding model '%s' on %s produces %d-dimensional vectors.",
                self.embed_model, self.get_engine_name(), self.dimension,
            )

    async def do_fetch_embedding_vector_size(self) -> int:
        """
        Fetch the output vector dimension of the configured embedding model.

        Returns:
            int: The number of dimensions produced by the embedding model.
        """
        method, body = self.get_model_details_request()
        response = await self.do_request(
            method=method,
            json=body,
            endpoint=self.get_endpoint_model_details(),
            raise_on_error=True,
        )
        return self.extract_vector_size_from_model_info(model_info=response.json())

    async def do_embed(self, texts: list[str] | str) -> list[list[float]]:
        """Embed texts in batches of at most max_batch_size and return the vectors.

        Every batch request holds the client's semaphore, which caps the number
        of simultaneous calls to the embedding service across all workers.

        Args:
            texts (list[str] | str): One or more texts to embed.

        Returns:
            list[list[float]]: Embedding vectors in the same order as the inputs.

        Raises:
            RequestTimeoutError, RateLimitedError, ServiceUnavailableError: transient failures.
            DimensionMismatchError: If a returned vector does not have the expected dimension.
        """
        texts = [texts] if isinstance(texts, str) else list(texts)
        vectors: list[list[float]] = []
        for batch_start in range(0, len(texts), self.max_batch_size):
            batch = texts[batch_start: batch_start + self.max_batch_size]
            vectors.extend(await self._embed_batch(batch))
        return vectors

    async def _embed_batch(self, batch: list[str]) -> list[list[float]]:
        async with self._semaphore:
            response = await self.do_request(
                method="POST",
                endpoint=self.get_endpoint_embedding(),
                json=self.get_embed_payload(batch),
                raise_on_error=True,
            )
        try:
            vectors = self.extract_embeddings_from_response(response.json())
        except ValueError as exc:
            raise ServiceUnavailableError(f"Malformed embedding response from {self.get_engine_name()}: {exc}") from exc

        if len(vectors) != len(batch):
            raise ServiceUnavailableError(
                f"Embedding count mismatch from {self.get_engine_name()}: expected {len(batch)}, got {len(vectors)}"
            )
        self._check_dimensions(vectors)
        return vectors

    def _check_dimensions(self, vectors: list[list[float]]) -> None:
        expected = self.get_dimension()
        for vector in vectors:
            if len(vector) != expected:
                self.logging.error(
                    "Embedding model '%s' returned %d dimensions, expected %d. Model or version changed?",
                    self.embed_model, len(vector), expected,
                )
                raise DimensionMismatchError(expected=expected, actual=len(vector))
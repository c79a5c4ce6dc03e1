"""OpenAI embedding generation service with retry logic."""

import logging
import random
import time
from typing import Any, Callable, List, Optional

import openai
from openai import OpenAI

from storage.models import (
    EMBEDDING_TYPES,
    BatchEmbeddingItem,
    BatchEmbeddingResult,
    EmbeddingRecord,
    EmbeddingResult,
    ProviderEmbedding,
)
from utils.errors import (
    ConfigurationError,
    EmbeddingError,
    EmptyInputError,
    InputTooLongError,
    ResearchRetrievalError,
    ValidationError,
)
from utils.vector_math import DEFAULT_DIMENSIONS, normalize_vector, validate_dimensions


logger = logging.getLogger("research-retrieval.embedding")

DEFAULT_MODEL = "text-embedding-3-small"
DEFAULT_MAX_INPUT_CHARS = 8000


class EmbeddingService:
    """Embedding generation against the OpenAI embeddings API."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: str = DEFAULT_MODEL,
        dimensions: int = DEFAULT_DIMENSIONS,
        timeout: int = 30,
        max_retries: int = 3,
        max_input_chars: int = DEFAULT_MAX_INPUT_CHARS,
        retry_base_delay: float = 1.0,
        retry_max_jitter: float = 1.0,
        retry_max_delay: float = 10.0,
        client: Optional[Any] = None
    ):
        """
        Initialize embedding service.

        Args:
            api_key: OpenAI API key (unused when client is given)
            model: Embedding model name
            dimensions: Expected embedding dimensions
            timeout: Request timeout (seconds)
            max_retries: Retries after the first attempt for transient failures
            max_input_chars: Longest text accepted before calling the provider
            retry_base_delay: First backoff delay (seconds), doubled per attempt
            retry_max_jitter: Upper bound of random jitter added to each delay (seconds)
            retry_max_delay: Cap on the exponential part of the delay (seconds)
            client: Pre-built OpenAI-compatible client
        """
        if client is None:
            if not api_key:
                raise ConfigurationError("OpenAI API key is required")
            # Retries are handled here, not by the SDK
            client = OpenAI(api_key=api_key, timeout=timeout, max_retries=0)

        self.client = client
        self.model = model
        self.dimensions = dimensions
        self.timeout = timeout
        self.max_retries = max_retries
        self.max_input_chars = max_input_chars
        self.retry_base_delay = retry_base_delay
        self.retry_max_jitter = retry_max_jitter
        self.retry_max_delay = retry_max_delay

    def generate_embedding(
        self,
        request: EmbeddingRecord,
        max_retries: Optional[int] = None,
        time_budget: Optional[float] = None
    ) -> EmbeddingResult:
        """
        Generate a single embedding with retry logic.

        Args:
            request: Text, content type and normalization flag
            max_retries: Override of the configured retry count for this call
            time_budget: Seconds this call may take across all attempts and
                backoff sleeps; each request timeout is capped to what is left

        Returns:
            EmbeddingResult with vector, model, token usage and dimensions

        Raises:
            ValidationError: Invalid input (empty, too long, bad type, bad dimensions)
            ConfigurationError: Invalid API key
            EmbeddingError: Generation failed, or retries were exhausted
        """
        self._validate_request(request)

        try:
            start_time = time.time()

            response = self._call_with_retry(
                self.client.embeddings.create,
                input=[request.text],
                model=self.model,
                dimensions=self.dimensions,
                max_retries=max_retries,
                time_budget=time_budget
            )

            provider = self._parse_response(response)
            validate_dimensions(provider.vector, self.dimensions)

            vector = provider.vector
            if request.normalize:
                vector = normalize_vector(vector)

            latency_ms = int((time.time() - start_time) * 1000)

            logger.info(
                f"Generated embedding: model={provider.model}, type={request.type}, "
                f"dims={len(vector)}, tokens={provider.tokens}, latency={latency_ms}ms"
            )

            return EmbeddingResult(
                vector=vector,
                model=provider.model,
                tokens=provider.tokens,
                dimensions=len(vector)
            )

        except ResearchRetrievalError:
            raise
        except Exception as e:
            logger.error(f"Embedding generation failed: {e}")
            raise EmbeddingError(f"Failed to generate embedding: {e}") from e

    def generate_embeddings(
        self,
        texts: List[str],
        type: str = "summary",
        normalize: bool = True,
        max_retries: Optional[int] = None
    ) -> BatchEmbeddingResult:
        """
        Generate embeddings for several texts, one provider call each.

        A failing text never aborts the batch: its item carries the error and
        no embedding.

        Args:
            texts: Texts to embed
            type: Content type shared by all texts
            normalize: Normalize each vector to unit length
            max_retries: Override of the configured retry count

        Returns:
            BatchEmbeddingResult with per-item outcomes in input order
        """
        items: List[BatchEmbeddingItem] = []

        for index, text in enumerate(texts):
            try:
                result = self.generate_embedding(
                    EmbeddingRecord(text=text, type=type, normalize=normalize),
                    max_retries=max_retries
                )
                items.append(BatchEmbeddingItem.success(index, result))
            except ResearchRetrievalError as e:
                logger.warning(f"Batch item {index} failed: {e}")
                items.append(BatchEmbeddingItem.failure(index, str(e)))

        successful = sum(1 for item in items if item.succeeded)

        logger.info(
            f"Batch embedding complete: total={len(texts)}, "
            f"successful={successful}, failed={len(items) - successful}"
        )

        return BatchEmbeddingResult(
            results=items,
            successful=successful,
            failed=len(items) - successful,
            total_tokens=sum(item.tokens for item in items if item.succeeded)
        )

    def embed(self, text: str) -> List[float]:
        """Generate a normalized query embedding and return only the vector."""
        result = self.generate_embedding(
            EmbeddingRecord(text=text, type="query", normalize=True)
        )
        return result.vector

    def _validate_request(self, request: EmbeddingRecord) -> None:
        if request.type not in EMBEDDING_TYPES:
            raise ValidationError(
                f"Invalid embedding type: {request.type!r}. "
                f"Must be one of: {', '.join(EMBEDDING_TYPES)}"
            )

        if not request.text or not request.text.strip():
            raise EmptyInputError("Text cannot be empty")

        if len(request.text) > self.max_input_chars:
            raise InputTooLongError(len(request.text), self.max_input_chars)

    def _parse_response(self, response: Any) -> ProviderEmbedding:
        """
        Validate a provider response and extract vector, usage and model.

        Raises:
            EmbeddingError: If the response carries no usable embedding
        """
        data = getattr(response, "data", None)
        if not data:
            raise EmbeddingError("Provider response contained no embedding data")

        raw_vector = getattr(data[0], "embedding", None)
        if not raw_vector:
            raise EmbeddingError("Provider response contained an empty embedding")

        try:
            vector = [float(x) for x in raw_vector]
        except (TypeError, ValueError) as e:
            raise EmbeddingError(f"Provider returned a non-numeric embedding: {e}") from e

        usage = getattr(response, "usage", None)
        tokens = getattr(usage, "total_tokens", 0)
        if not isinstance(tokens, int):
            tokens = 0

        model = getattr(response, "model", None)
        if not isinstance(model, str) or not model:
            model = self.model

        return ProviderEmbedding(vector=vector, tokens=tokens, model=model)

    def _backoff_delay(self, attempt: int) -> float:
        """Delay before retry number attempt + 1 (seconds)."""
        delay = min(self.retry_base_delay * (2 ** attempt), self.retry_max_delay)
        return delay + random.uniform(0, self.retry_max_jitter)

    def _call_with_retry(
        self,
        func: Callable[..., Any],
        *args,
        max_retries: Optional[int] = None,
        time_budget: Optional[float] = None,
        **kwargs
    ) -> Any:
        """
        Execute function with exponential backoff and jitter.

        Args:
            func: Function to call
            *args: Positional arguments
            max_retries: Retries after the first attempt (defaults to the service setting)
            time_budget: Overall time limit (seconds); no retry starts past it
            **kwargs: Keyword arguments

        Returns:
            Function result

        Raises:
            ConfigurationError: For auth errors (no retry)
            ValidationError: For invalid input (no retry)
            EmbeddingError: For other client errors, after retries are exhausted,
                or when the time budget runs out
        """
        retries = self.max_retries if max_retries is None else max_retries
        deadline = None if time_budget is None else time.monotonic() + time_budget
        attempt = 0

        while True:
            if deadline is not None:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    raise EmbeddingError(
                        f"Time budget of {time_budget}s exhausted after {attempt} attempts",
                        retryable=True
                    )
                kwargs["timeout"] = min(self.timeout, remaining)

            try:
                return func(*args, **kwargs)

            except (openai.AuthenticationError, openai.PermissionDeniedError) as e:
                raise ConfigurationError(
                    "Invalid OpenAI API key. Check OPENAI_API_KEY environment variable."
                ) from e

            except (openai.BadRequestError, openai.UnprocessableEntityError) as e:
                raise ValidationError(f"Invalid input: {e}") from e

            except openai.RateLimitError as e:
                last_error, reason = e, "OpenAI rate limit reached"

            except (openai.APITimeoutError, TimeoutError) as e:
                last_error, reason = e, "Request timeout"

            except (openai.APIConnectionError, ConnectionError) as e:
                last_error, reason = e, "Connection error"

            except openai.APIStatusError as e:
                if e.status_code < 500:
                    raise EmbeddingError(
                        f"OpenAI request failed with status {e.status_code}: {e}"
                    ) from e
                last_error, reason = e, "OpenAI service error"

            if attempt >= retries:
                raise EmbeddingError(
                    f"{reason} after {attempt + 1} attempts: {last_error}",
                    retryable=True
                ) from last_error

            delay = self._backoff_delay(attempt)
            if deadline is not None and time.monotonic() + delay >= deadline:
                raise EmbeddingError(
                    f"{reason}, no time left to retry within {time_budget}s: {last_error}",
                    retryable=True
                ) from last_error

            attempt += 1
            logger.warning(
                f"{reason} (attempt {attempt}/{retries + 1}), "
                f"retrying in {delay:.2f}s"
            )
            time.sleep(delay)

    def get_model_info(self) -> dict:
        """
        Return model configuration.

        Returns:
            Dictionary with provider, model, dimensions and limits
        """
        return {
            "provider": "openai",
            "model": self.model,
            "dimensions": self.dimensions,
            "max_input_chars": self.max_input_chars,
            "timeout": self.timeout,
            "max_retries": self.max_retries
        }

    def health_check(self) -> dict:
        """
        Test API connectivity with a small embedding.

        Returns:
            Dictionary with status, latency_ms, and optional error
        """
        try:
            start_time = time.time()
            self.generate_embedding(EmbeddingRecord(text="test", type="query"), max_retries=0)
            latency_ms = int((time.time() - start_time) * 1000)

            return {
                "status": "healthy",
                "model": self.model,
                "dimensions": self.dimensions,
                "api_latency_ms": latency_ms
            }
        except ResearchRetrievalError as e:
            return {
                "status": "unhealthy",
                "model": self.model,
                "error": str(e)
            }

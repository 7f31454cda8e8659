"""Thin synchronous client over the configured LLM provider."""

import logging

from stackdrift.config import Settings

logger = logging.getLogger(__name__)

# Fixed seed for deterministic output (OpenAI only)
DETERMINISTIC_SEED = 42


class LLMCallError(Exception):
    """The model call failed. ``retryable`` marks rate limits, 5xx and network errors."""

    def __init__(self, message: str, retryable: bool = False, status_code: int | None = None):
        super().__init__(message)
        self.retryable = retryable
        self.status_code = status_code


def _is_retryable_status(status_code: int | None) -> bool:
    return status_code is not None and (status_code == 429 or status_code >= 500)


class LLMClient:
    """Request/response completion against OpenAI or Anthropic."""

    def __init__(self, settings: Settings):
        self.settings = settings
        self.provider = settings.llm_provider
        self.model = settings.llm_model
        self.timeout = settings.llm_timeout_seconds
        self._openai_client = None
        self._anthropic_client = None

    def _get_openai_client(self):
        """Lazy load OpenAI client."""
        if self._openai_client is None:
            from openai import OpenAI
            self._openai_client = OpenAI(
                api_key=self.settings.openai_api_key,
                timeout=self.timeout,
                max_retries=0,  # Retries are decided by the analyzer
            )
        return self._openai_client

    def _get_anthropic_client(self):
        """Lazy load Anthropic client."""
        if self._anthropic_client is None:
            from anthropic import Anthropic
            self._anthropic_client = Anthropic(
                api_key=self.settings.anthropic_api_key,
                timeout=self.timeout,
                max_retries=0,
            )
        return self._anthropic_client

    def _call_openai(self, prompt: str) -> str:
        """Call OpenAI API with deterministic settings."""
        import openai

        client = self._get_openai_client()
        try:
            response = client.chat.completions.create(
                model=self.model,
                messages=[{"role": "user", "content": prompt}],
                max_tokens=self.settings.llm_max_tokens,
                temperature=0,
                seed=DETERMINISTIC_SEED,
                response_format={"type": "json_object"},
            )
        except openai.APIStatusError as e:
            raise LLMCallError(
                f"OpenAI returned HTTP {e.status_code}",
                retryable=_is_retryable_status(e.status_code),
                status_code=e.status_code,
            ) from e
        except openai.APIConnectionError as e:
            # Includes APITimeoutError
            raise LLMCallError(f"OpenAI connection failed: {e}", retryable=True) from e

        logger.info(f"OpenAI fingerprint: {response.system_fingerprint}")
        return response.choices[0].message.content or ""

    def _call_anthropic(self, prompt: str) -> str:
        """Call Anthropic API."""
        import anthropic

        client = self._get_anthropic_client()
        try:
            response = client.messages.create(
                model=self.model,
                max_tokens=self.settings.llm_max_tokens,
                messages=[{"role": "user", "content": prompt}],
                temperature=0,
            )
        except anthropic.APIStatusError as e:
            raise LLMCallError(
                f"Anthropic returned HTTP {e.status_code}",
                retryable=_is_retryable_status(e.status_code),
                status_code=e.status_code,
            ) from e
        except anthropic.APIConnectionError as e:
            raise LLMCallError(f"Anthropic connection failed: {e}", retryable=True) from e

        text_blocks = [block.text for block in response.content if block.type == "text"]
        return text_blocks[0] if text_blocks else ""

    def complete(self, prompt: str) -> str:
        """Call configured LLM provider and return the raw text response."""
        logger.info(f"Calling {self.provider} {self.model}...")

        if self.provider == "openai":
            return self._call_openai(prompt)
        elif self.provider == "anthropic":
            return self._call_anthropic(prompt)
        else:
            raise LLMCallError(f"Unknown LLM provider: {self.provider}")

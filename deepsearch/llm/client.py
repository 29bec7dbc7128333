"""
LLM Client abstraction for DeepSearch.

Provides a pluggable interface so the LLM backend can be swapped without
changing any agent logic.  The current implementation talks to any
OpenAI-compatible ``/v1/chat/completions`` endpoint.  Every call reports its
token usage because the step loop is budgeted in tokens.
"""

import logging
import os
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Dict, List, Optional

import requests

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LLMCompletion:
    """Assistant text plus the tokens the provider billed for the call."""

    text: str
    total_tokens: int = 0


# ---------------------------------------------------------------------------
# Abstract base
# ---------------------------------------------------------------------------

class LLMClient(ABC):
    """Abstract LLM client interface.

    Subclass this and implement ``complete`` to plug in a new LLM backend.
    """

    #: Label reported to the token tracker as the usage provider.
    provider_name: str = "llm"

    @abstractmethod
    def complete(
        self,
        system_prompt: str,
        messages: List[Dict[str, str]],
        temperature: float = 0.0,
        max_tokens: int = 1024,
        purpose: str = "",
        json_mode: bool = False,
    ) -> LLMCompletion:
        """Send a chat-completion request.

        Parameters
        ----------
        system_prompt : str
            System instruction.
        messages : list of dict
            Conversation turns (``{"role", "content"}``) after the system prompt.
        temperature : float
            Sampling temperature.
        max_tokens : int
            Max tokens to generate.
        purpose : str
            Human-readable label used for logging.
        json_mode : bool
            Ask the backend to constrain output to a JSON object.

        Returns
        -------
        LLMCompletion
            The reply, or ``LLMCompletion("")`` on failure.
        """
        ...


# ---------------------------------------------------------------------------
# OpenAI-compatible implementation (current default)
# ---------------------------------------------------------------------------

class OpenAICompatibleClient(LLMClient):
    """LLM client that talks to any OpenAI-compatible ``/v1/chat/completions`` endpoint."""

    provider_name = "openai"

    def __init__(
        self,
        api_url: str,
        api_key: str,
        model_id: str,
        max_retries: int = 3,
        timeout: int = 60,
        json_mode_supported: bool = True,
        retry_sleep=time.sleep,
    ):
        self.api_url = api_url
        self.api_key = api_key
        self.model_id = model_id
        self.max_retries = max_retries
        self.timeout = timeout
        self.json_mode_supported = json_mode_supported
        self._retry_sleep = retry_sleep

    # -- factory helpers ---------------------------------------------------

    @classmethod
    def from_config(cls, base_model_cfg: dict) -> Optional["OpenAICompatibleClient"]:
        """Create a client from the ``base_model`` section of config.yaml.

        ``OPENAI_API_KEY`` / ``OPENAI_BASE_URL`` override the file.  Returns
        ``None`` if required fields are missing.
        """
        api_url = base_model_cfg.get("api_url")
        base_url = os.getenv("OPENAI_BASE_URL")
        if base_url:
            api_url = base_url.rstrip("/") + "/chat/completions"
        api_key = os.getenv("OPENAI_API_KEY") or base_model_cfg.get("api_key")
        model_id = base_model_cfg.get("model_id")
        if not api_url or not api_key or api_key.startswith("YOUR_") or not model_id:
            return None
        return cls(
            api_url=api_url,
            api_key=api_key,
            model_id=model_id,
            max_retries=int(base_model_cfg.get("max_retries", 3)),
            timeout=int(base_model_cfg.get("timeout", 60)),
            json_mode_supported=bool(base_model_cfg.get("json_mode", True)),
        )

    # -- core -------------------------------------------------------------

    def complete(
        self,
        system_prompt: str,
        messages: List[Dict[str, str]],
        temperature: float = 0.0,
        max_tokens: int = 1024,
        purpose: str = "",
        json_mode: bool = False,
    ) -> LLMCompletion:
        headers = {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self.api_key}",
        }
        payload = {
            "model": self.model_id,
            "messages": [{"role": "system", "content": system_prompt}] + list(messages),
            "temperature": temperature,
            "max_tokens": max_tokens,
        }
        if json_mode and self.json_mode_supported:
            payload["response_format"] = {"type": "json_object"}

        user_len = sum(len(str(m.get("content", ""))) for m in messages)
        for attempt in range(self.max_retries):
            try:
                logger.info(
                    "LLM call: purpose=%s model=%s temp=%.1f max_tokens=%d "
                    "system_len=%d user_len=%d",
                    purpose or "generic",
                    self.model_id,
                    temperature,
                    max_tokens,
                    len(system_prompt),
                    user_len,
                )
                resp = requests.post(
                    self.api_url, headers=headers, json=payload, timeout=self.timeout
                )
                if resp.status_code == 429:
                    wait = 5 * (attempt + 1)
                    logger.warning("LLM rate-limited (attempt %d), retry in %ds", attempt + 1, wait)
                    self._retry_sleep(wait)
                    continue
                resp.raise_for_status()
                body = resp.json()

                if body.get("choices"):
                    content = body["choices"][0].get("message", {}).get("content") or ""
                    usage = body.get("usage") or {}
                    total_tokens = int(usage.get("total_tokens") or 0)
                    return LLMCompletion(text=content.strip(), total_tokens=total_tokens)

                logger.error("LLM missing choices: %s", str(body)[:400])
                return LLMCompletion("")
            except (requests.RequestException, ValueError) as exc:
                logger.error("LLM error (attempt %d): %s", attempt + 1, exc)
                if attempt < self.max_retries - 1:
                    self._retry_sleep(5 * (attempt + 1))
                    continue
                return LLMCompletion("")
        return LLMCompletion("")

from __future__ import annotations

from typing import Any, Dict, Optional, Tuple

from langchain_core.output_parsers import StrOutputParser
from langchain_core.prompts import ChatPromptTemplate
from langchain_openai import ChatOpenAI
from openai import APIConnectionError, APIStatusError, APITimeoutError

from askbase.config import Settings, settings
from askbase.errors import UpstreamLLMError
from askbase.utils.logger import logger


class LLMClient:
    """Chat-completion wrapper over an OpenAI-compatible endpoint (OpenRouter by default).

    Running without an API key is a supported configuration: ``is_available``
    reports False and every call raises ``UpstreamLLMError`` so callers take
    their deterministic fallback.
    """

    def __init__(self, cfg: Settings = settings) -> None:
        self._settings = cfg
        self._models: Dict[Tuple[int, float], ChatOpenAI] = {}
        self._parser = StrOutputParser()
        if not cfg.llm_api_key:
            logger.warning("LLM_API_KEY not set. LLM features will be disabled.")

    def is_available(self) -> bool:
        return bool(self._settings.llm_api_key)

    def _model(self, max_tokens: int, temperature: float) -> ChatOpenAI:
        key = (max_tokens, temperature)
        llm = self._models.get(key)
        if llm is None:
            cfg = self._settings
            llm = ChatOpenAI(
                model=cfg.llm_model,
                api_key=cfg.llm_api_key,
                base_url=cfg.llm_base_url,
                temperature=temperature,
                max_tokens=max_tokens,
                timeout=cfg.llm_timeout_seconds,
                max_retries=0,
                default_headers={
                    "HTTP-Referer": cfg.llm_app_referer,
                    "X-Title": cfg.llm_app_title,
                },
            )
            self._models[key] = llm
        return llm

    def run(
        self,
        prompt: ChatPromptTemplate,
        variables: Dict[str, Any],
        *,
        max_tokens: int,
        temperature: float,
    ) -> str:
        """Render ``prompt`` with ``variables`` and return the model's text reply."""
        if not self.is_available():
            raise UpstreamLLMError("LLM is not configured. Set LLM_API_KEY to enable it.")

        chain = prompt | self._model(max_tokens, temperature) | self._parser
        try:
            content: Optional[str] = chain.invoke(variables)
        except APITimeoutError as exc:
            raise UpstreamLLMError("LLM request timed out", detail=str(exc)) from exc
        except APIStatusError as exc:
            raise UpstreamLLMError(
                f"LLM provider returned HTTP {exc.status_code}", detail=str(exc)
            ) from exc
        except APIConnectionError as exc:
            raise UpstreamLLMError("Could not reach the LLM provider", detail=str(exc)) from exc
        except Exception as exc:  # noqa: BLE001
            raise UpstreamLLMError("LLM call failed", detail=str(exc)) from exc
        return (content or "").strip()


llm_client = LLMClient()

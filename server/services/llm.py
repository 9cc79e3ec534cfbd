"""JSON-mode chat completions for insight extraction."""

import json
import time
from typing import Any, Dict, Optional

from langchain_openai import ChatOpenAI
from langchain_core.messages import HumanMessage, SystemMessage

from core.config import Settings
from core.logging import get_logger, log_api_call, log_execution_time

logger = get_logger(__name__)

PROVIDER = "openai"


class InsightLLM:
    """Given a system and user prompt, return the model's JSON object.

    Failures are not retried: a missing key, transport error or unparsable
    body is logged and reported as ``None`` so callers treat it as "no
    output".
    """

    def __init__(self, settings: Settings):
        self.settings = settings

    @property
    def configured(self) -> bool:
        return bool(self.settings.openai_api_key)

    def create_model(self, temperature: float, max_tokens: int) -> ChatOpenAI:
        return ChatOpenAI(
            model=self.settings.insights_model,
            api_key=self.settings.openai_api_key,
            temperature=temperature,
            max_tokens=max_tokens,
            timeout=self.settings.ai_timeout,
            max_retries=0,
            model_kwargs={"response_format": {"type": "json_object"}},
        )

    async def complete_json(self, system_prompt: str, user_prompt: str,
                            temperature: float = 0.3, max_tokens: int = 2000) -> Optional[Dict[str, Any]]:
        model = self.settings.insights_model
        if not self.configured:
            logger.warning("OpenAI API key not configured, skipping completion")
            return None

        start_time = time.time()
        try:
            chat_model = self.create_model(temperature, max_tokens)
            response = await chat_model.ainvoke([
                SystemMessage(content=system_prompt),
                HumanMessage(content=user_prompt),
            ])
            parsed = json.loads(response.content)
            if not isinstance(parsed, dict):
                raise ValueError("Expected a JSON object")

            log_execution_time(logger, "llm_json_completion", start_time, time.time())
            log_api_call(logger, PROVIDER, model, "json_completion", True)
            return parsed

        except Exception as e:
            log_api_call(logger, PROVIDER, model, "json_completion", False, error=str(e))
            return None

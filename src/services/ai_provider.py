"""
AI Provider
Generates reply text for AI nodes.
Routes to OpenAI chat completions, Gemini generateContent, or the default
OpenAI-compatible gateway depending on the resolved AIProviderConfig.
"""
from abc import ABC, abstractmethod
from typing import Dict, Any
import aiohttp

from utils.log_utils import LogUtil
from utils.environment_utils import EnvironmentUtils
from exceptions.flow_exception import AIProviderException
from models.ai_config import AIProviderConfig

NO_RESPONSE_TEXT = "No response from AI"
NOT_CONFIGURED_TEXT = "AI is not configured. Please configure your AI settings in the dashboard."

DEFAULT_OPENAI_MODEL = "gpt-5-2025-08-07"
DEFAULT_GEMINI_MODEL = "gemini-2.5-flash"
MAX_OUTPUT_TOKENS = 1000

# Models that take max_completion_tokens and reject temperature
OPENAI_COMPLETION_TOKEN_MODELS = {
    "gpt-5-2025-08-07",
    "gpt-5-mini-2025-08-07",
    "gpt-5-nano-2025-08-07",
    "gpt-4.1-2025-04-14",
    "o3-2025-04-16",
    "o4-mini-2025-04-16",
}


class AIProvider(ABC):
    """
    Capability interface for prompt completion
    """

    @abstractmethod
    async def complete(self, prompt: str, config: AIProviderConfig) -> str:
        """
        Raises:
            AIProviderException: the provider call failed
        """
        raise NotImplementedError


class HttpAIProvider(AIProvider):
    def __init__(self, log_util: LogUtil, environment_utils: EnvironmentUtils):
        self.log_util = log_util
        self.openai_url = environment_utils.get_env_variable("OPENAI_API_URL")
        self.gemini_url = str(environment_utils.get_env_variable("GEMINI_API_URL")).rstrip("/")
        self.default_url = environment_utils.get_env_variable("DEFAULT_AI_URL")
        self.default_model = environment_utils.get_env_variable("DEFAULT_AI_MODEL")
        self.default_api_key = environment_utils.get_env_variable("DEFAULT_AI_API_KEY")

    async def complete(self, prompt: str, config: AIProviderConfig) -> str:
        if config.provider == "openai" and config.api_key:
            return await self._call_openai(prompt, config)
        if config.provider == "gemini" and config.api_key:
            return await self._call_gemini(prompt, config)
        return await self._call_default(prompt, config)

    async def _post_json(self, provider: str, url: str, body: Dict[str, Any], headers: Dict[str, str]) -> Dict[str, Any]:
        try:
            async with aiohttp.ClientSession() as session:
                async with session.post(url, json=body, headers=headers) as response:
                    if response.status != 200:
                        error_text = await response.text()
                        self.log_util.error(
                            service_name="HttpAIProvider",
                            message=f"[AI] {provider} API error {response.status}: {error_text}"
                        )
                        raise AIProviderException(f"{provider} API error: {error_text}")
                    return await response.json()
        except aiohttp.ClientError as e:
            self.log_util.error(
                service_name="HttpAIProvider",
                message=f"[AI] {provider} request failed: {str(e)}"
            )
            raise AIProviderException(f"{provider} request failed: {str(e)}") from e

    @staticmethod
    def _chat_completion_text(data: Dict[str, Any]) -> str:
        choices = data.get("choices") or []
        if not choices:
            return NO_RESPONSE_TEXT
        return (choices[0].get("message") or {}).get("content") or NO_RESPONSE_TEXT

    async def _call_openai(self, prompt: str, config: AIProviderConfig) -> str:
        model = config.model or DEFAULT_OPENAI_MODEL
        self.log_util.info(service_name="HttpAIProvider", message=f"[AI] Calling OpenAI with model {model}")

        body: Dict[str, Any] = {
            "model": model,
            "messages": [{"role": "user", "content": prompt}],
        }
        if model in OPENAI_COMPLETION_TOKEN_MODELS:
            body["max_completion_tokens"] = MAX_OUTPUT_TOKENS
        else:
            body["max_tokens"] = MAX_OUTPUT_TOKENS
            body["temperature"] = 0.7

        data = await self._post_json(
            "OpenAI",
            self.openai_url,
            body,
            {"Authorization": f"Bearer {config.api_key}", "Content-Type": "application/json"}
        )
        return self._chat_completion_text(data)

    async def _call_gemini(self, prompt: str, config: AIProviderConfig) -> str:
        model = config.model or DEFAULT_GEMINI_MODEL
        self.log_util.info(service_name="HttpAIProvider", message=f"[AI] Calling Gemini with model {model}")

        data = await self._post_json(
            "Gemini",
            f"{self.gemini_url}/{model}:generateContent?key={config.api_key}",
            {
                "contents": [{"parts": [{"text": prompt}]}],
                "generationConfig": {"temperature": 0.7, "maxOutputTokens": MAX_OUTPUT_TOKENS},
            },
            {"Content-Type": "application/json"}
        )
        try:
            return data["candidates"][0]["content"]["parts"][0]["text"] or NO_RESPONSE_TEXT
        except (KeyError, IndexError, TypeError):
            return NO_RESPONSE_TEXT

    async def _call_default(self, prompt: str, config: AIProviderConfig) -> str:
        if not self.default_api_key:
            self.log_util.warning(
                service_name="HttpAIProvider",
                message="[AI] DEFAULT_AI_API_KEY not configured, returning fallback response"
            )
            return NOT_CONFIGURED_TEXT

        model = self.default_model
        self.log_util.info(service_name="HttpAIProvider", message=f"[AI] Calling default gateway with model {model}")

        data = await self._post_json(
            "Default AI",
            self.default_url,
            {"model": model, "messages": [{"role": "user", "content": prompt}]},
            {"Authorization": f"Bearer {self.default_api_key}", "Content-Type": "application/json"}
        )
        return self._chat_completion_text(data)

import logging
from abc import ABC, abstractmethod
from typing import Any, AsyncIterator, List, Optional

from pydantic import BaseModel
from langchain_core.messages import BaseMessage, HumanMessage, SystemMessage
from langchain_openai import ChatOpenAI

from ..core.errors import ProviderNotConfiguredError

logger = logging.getLogger(__name__)

class GenerationOptions(BaseModel):
    """Per-call generation settings"""
    temperature: float = 0.8
    json_response: bool = False

class DiagnosisProvider(ABC):
    """Language model backend producing the narrative analysis"""

    @property
    def configured(self) -> bool:
        return True

    @abstractmethod
    async def generate(self, system_instruction: str, user_content: str,
                       options: GenerationOptions) -> str:
        """Return the complete response text"""

    @abstractmethod
    def stream(self, system_instruction: str, user_content: str,
               options: GenerationOptions) -> AsyncIterator[str]:
        """Yield the response text incrementally"""

def _content_text(content: Any) -> str:
    """Message content may be a string or a list of content parts"""
    if isinstance(content, list):
        return "".join(
            item.get("text", "") if isinstance(item, dict) else str(item)
            for item in content
        )
    return content or ""

class OpenAIDiagnosisProvider(DiagnosisProvider):
    """Diagnosis provider backed by an OpenAI chat model through LangChain"""

    def __init__(self, openai_api_key: Optional[str], model_name: str = "gpt-4o-mini"):
        self.openai_api_key = openai_api_key
        self.model_name = model_name

        if self.configured:
            logger.info(f"OpenAI diagnosis provider initialized with {model_name}")
        else:
            logger.warning("OPENAI_API_KEY not set - AI actions will be rejected")

    @property
    def configured(self) -> bool:
        return bool(self.openai_api_key)

    def _chat(self, options: GenerationOptions):
        if not self.configured:
            raise ProviderNotConfiguredError()

        llm = ChatOpenAI(
            model_name=self.model_name,
            temperature=options.temperature,
            openai_api_key=self.openai_api_key,
        )
        if options.json_response:
            return llm.bind(response_format={"type": "json_object"})
        return llm

    @staticmethod
    def _messages(system_instruction: str, user_content: str) -> List[BaseMessage]:
        return [
            SystemMessage(content=system_instruction),
            HumanMessage(content=user_content),
        ]

    async def generate(self, system_instruction: str, user_content: str,
                       options: GenerationOptions) -> str:
        response = await self._chat(options).ainvoke(
            self._messages(system_instruction, user_content)
        )
        return _content_text(response.content)

    async def stream(self, system_instruction: str, user_content: str,
                     options: GenerationOptions) -> AsyncIterator[str]:
        chat = self._chat(options)
        async for chunk in chat.astream(self._messages(system_instruction, user_content)):
            text = _content_text(chunk.content)
            if text:
                yield text

"""Handles text translation over chat-style conversation turns."""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import List, Optional

from .exceptions import TranslationError
from .openai_api import OpenAIClient, OpenAIAPIError
from .utils import resolve_device

logger = logging.getLogger(__name__)

SYSTEM = "system"
USER = "user"
ASSISTANT = "assistant"


@dataclass
class ChatMessage:
    role: str
    content: str


class Translator(ABC):
    """Abstract base class for translation services."""

    @abstractmethod
    def complete(self, messages: List[ChatMessage], model: Optional[str] = None) -> str:
        """
        Produces the assistant reply to an ordered conversation.

        Args:
            messages: A system instruction, optional context turns, then the
                      user turn holding the text to translate.
            model: Optional model override for this call.

        Returns:
            The translated (or rewritten) text.

        Raises:
            TranslationError: If translation fails.
        """
        pass


class OpenAIChatTranslator(Translator):
    """Translates through the hosted chat/completions endpoint."""

    def __init__(self, client: OpenAIClient, model: str = "gpt-3.5-turbo-1106"):
        self.client = client
        self.model = model

    def complete(self, messages: List[ChatMessage], model: Optional[str] = None) -> str:
        payload = {
            'model': model or self.model,
            'messages': [{'role': m.role, 'content': m.content} for m in messages],
        }
        try:
            result = self.client.post_json('chat/completions', json=payload)
        except OpenAIAPIError as e:
            logger.error(f"Chat completion failed with {len(messages)} messages: {e}")
            raise TranslationError(f"Translation request failed: {e}") from e

        try:
            content = result['choices'][0]['message']['content']
        except (KeyError, IndexError, TypeError) as e:
            raise TranslationError(f"Unusable chat completion response: {str(result)[:200]}") from e
        if not content:
            raise TranslationError("Chat completion returned empty content")

        logger.info(f"Translate ok, messages={len(messages)}, resp is <{len(content)}>B")
        return content.strip()


class HuggingFaceTranslator(Translator):
    """
    Translates with a local seq2seq checkpoint such as Helsinki-NLP/opus-mt.

    These models take no conversation, so only the last user turn is used
    and the `model` override is ignored.
    """

    def __init__(self, model_name: str = "Helsinki-NLP/opus-mt-en-zh", device: str = "cuda", max_length: int = 512):
        import torch
        from transformers import AutoTokenizer, AutoModelForSeq2SeqLM

        self._torch = torch
        self.model_name = model_name
        self.device = resolve_device(device)
        self.max_length = max_length

        logger.info(f"Loading translation model '{model_name}' on {self.device}")
        try:
            self.tokenizer = AutoTokenizer.from_pretrained(model_name)
            self.model = AutoModelForSeq2SeqLM.from_pretrained(model_name).to(self.device)
            self.model.eval()
        except Exception as e:
            logger.error(f"Failed to load translation model '{model_name}': {e}", exc_info=True)
            raise TranslationError(f"Failed to load translation model '{model_name}': {e}", model_name) from e

    def complete(self, messages: List[ChatMessage], model: Optional[str] = None) -> str:
        user_turns = [m.content for m in messages if m.role == USER]
        if not user_turns:
            raise TranslationError("No user turn to translate")
        text = user_turns[-1]
        if not text:
            return ""

        try:
            batch = self.tokenizer(text, return_tensors="pt", truncation=True, max_length=self.max_length)
            batch = {name: tensor.to(self.device) for name, tensor in batch.items()}
            with self._torch.no_grad():
                output = self.model.generate(**batch, max_length=self.max_length)
            translated = self.tokenizer.decode(output[0], skip_special_tokens=True)
        except Exception as e:
            logger.error(f"Local translation failed for <{len(text)}>B of text: {e}", exc_info=True)
            raise TranslationError(f"Local translation failed: {e}") from e

        logger.debug(f"Translate ok, <{len(text)}>B in, <{len(translated)}>B out")
        return translated.strip()

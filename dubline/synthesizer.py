"""Handles text-to-speech synthesis of translated segments."""

import logging
from abc import ABC, abstractmethod

import requests

from .exceptions import SynthesisError
from .openai_api import OpenAIClient, OpenAIAPIError
from .utils import remove_quietly

logger = logging.getLogger(__name__)


class SpeechSynthesizer(ABC):
    """Abstract base class for speech synthesis services."""

    @abstractmethod
    def synthesize(self, text: str, output_path: str) -> str:
        """
        Speaks `text` and writes the compressed audio to output_path.

        Returns:
            output_path.

        Raises:
            SynthesisError: If synthesis or writing the audio fails.
        """
        pass


class OpenAISpeechSynthesizer(SpeechSynthesizer):
    """Synthesizes through the hosted audio/speech endpoint."""

    def __init__(self, client: OpenAIClient, model: str = "tts-1", voice: str = "nova", response_format: str = "aac"):
        self.client = client
        self.model = model
        self.voice = voice
        self.response_format = response_format

    def synthesize(self, text: str, output_path: str) -> str:
        if not text:
            raise SynthesisError("Nothing to synthesize", output_path)

        payload = {
            'model': self.model,
            'input': text,
            'voice': self.voice,
            'response_format': self.response_format,
        }
        try:
            response = self.client.post('audio/speech', json=payload, stream=True)
        except OpenAIAPIError as e:
            logger.error(f"Speech request failed for {output_path}: {e}")
            raise SynthesisError(f"Speech synthesis failed: {e}", output_path) from e

        try:
            with response, open(output_path, 'wb') as out:
                for chunk in response.iter_content(chunk_size=64 * 1024):
                    if chunk:
                        out.write(chunk)
        except (OSError, requests.RequestException) as e:
            remove_quietly(output_path)
            logger.error(f"Error writing speech to {output_path}: {e}", exc_info=True)
            raise SynthesisError(f"Error writing the file {output_path}: {e}", output_path) from e

        logger.info(f"TTS ok, text is <{len(text)}>B, wrote {output_path}")
        return output_path

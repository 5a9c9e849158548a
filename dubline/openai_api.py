"""Thin HTTP client for the OpenAI-compatible endpoints Dubline calls."""

import logging
from typing import Optional

import requests

from .exceptions import ConfigurationError

logger = logging.getLogger(__name__)


class OpenAIAPIError(Exception):
    """Raised for transport failures and non-2xx responses."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class OpenAIClient:
    """Shares one requests session, base URL and key across services."""

    def __init__(self, api_key: Optional[str], base_url: str = "https://api.openai.com/v1", timeout: float = 300):
        if not api_key:
            raise ConfigurationError("OPENAI_API_KEY is required")
        self.base_url = base_url.rstrip('/')
        self.timeout = timeout
        self.session = requests.Session()
        self.session.headers.update({"Authorization": f"Bearer {api_key}"})
        logger.info(f"OpenAI client ready, key={len(api_key)}B, base_url={self.base_url}")

    def post(self, path: str, stream: bool = False, **kwargs) -> requests.Response:
        url = f"{self.base_url}/{path.lstrip('/')}"
        try:
            response = self.session.post(url, timeout=self.timeout, stream=stream, **kwargs)
        except requests.RequestException as e:
            raise OpenAIAPIError(f"POST {url} failed: {e}") from e

        if response.status_code >= 400:
            body = response.text[:500]
            response.close()
            raise OpenAIAPIError(f"POST {url} returned {response.status_code}: {body}", response.status_code)
        return response

    def post_json(self, path: str, **kwargs) -> dict:
        response = self.post(path, **kwargs)
        try:
            return response.json()
        except ValueError as e:
            raise OpenAIAPIError(f"Invalid JSON from {path}: {response.text[:200]}") from e

"""Handles loading configuration from YAML files and the environment."""

import copy
import logging
import os
from typing import Optional

import yaml
from dotenv import load_dotenv

from .exceptions import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_TRANSLATE_PROMPT = (
    "Rephrase all user input text into simple, easy to understand, and technically "
    "toned Chinese. Never answer questions but only translate or rephrase text to Chinese."
)
DEFAULT_SHORTER_PROMPT = "Make the text shorter. Please maintain the original meaning."

DEFAULT_CONFIG = {
    'work_dir': 'work',
    'log_dir': 'logs',
    'log_file': 'dubline.log',
    'log_max_bytes': 10 * 1024 * 1024,
    'log_backup_count': 5,
    'ffmpeg_path': None,
    'ffprobe_path': None,
    # Maps URLs served by the web layer onto local files
    'resource_prefix': '/api/vod-translator/resources/',
    'static_dir': 'static',
    'openai_api_key': None,
    'openai_base_url': 'https://api.openai.com/v1',
    'request_timeout': 300,
    'backend': 'openai',
    'asr_language': 'en',
    'asr_model': 'whisper-1',
    'asr_limit_bytes': 25 * 1024 * 1024,
    'asr_safety_divisor': 10,
    'whisper_model': 'medium',
    'whisper_fp16': True,
    'device': 'cuda',
    'translation_model': 'gpt-3.5-turbo-1106',
    'shorter_model': 'gpt-4-turbo-preview',
    'hf_translation_model': 'Helsinki-NLP/opus-mt-en-zh',
    'translate_prompt': DEFAULT_TRANSLATE_PROMPT,
    'shorter_prompt': DEFAULT_SHORTER_PROMPT,
    'tts_model': 'tts-1',
    'tts_voice': 'nova',
    'tts_format': 'aac',
    'track_sample_rate': 16000,
    'min_silence_seconds': 0.01,
    'delivery_sample_rate': 44100,
    'delivery_channels': 2,
    'delivery_bitrate': '120k',
    'expiry_seconds': 3 * 24 * 3600,
    'expiry_check_interval': 3.0,
    'batch_concurrency': 1,
    'batch_retries': 3,
    'batch_backoff': 1.5,
    'batch_delay': 1.0,
}

# Environment variable -> config key
ENV_OVERRIDES = {
    'OPENAI_API_KEY': 'openai_api_key',
    'OPENAI_PROXY': 'openai_base_url',
    'DUBLINE_ASR_LANGUAGE': 'asr_language',
    'DUBLINE_WORK_DIR': 'work_dir',
}


class ConfigLoader:
    """Loads configuration settings from a YAML file and the environment."""

    def __init__(self, env_file: Optional[str] = ".env"):
        self.env_file = env_file

    def load_config(self, config_path: Optional[str]) -> dict:
        """
        Loads configuration from the specified YAML file path.

        Values from the file are merged over DEFAULT_CONFIG, then environment
        variables (optionally loaded from a .env file) take precedence.

        Args:
            config_path: The path to the YAML configuration file, or None to
                         use defaults and the environment only.

        Returns:
            A dictionary containing the loaded configuration settings.

        Raises:
            FileNotFoundError: If the configuration file does not exist.
            ConfigurationError: If the file cannot be parsed as YAML or
                              if there are other reading errors.
        """
        config = copy.deepcopy(DEFAULT_CONFIG)
        if config_path:
            config.update(self._read_yaml(config_path))
        self._apply_env(config)
        return config

    def _read_yaml(self, config_path: str) -> dict:
        logger.info(f"Attempting to load configuration from: {config_path}")
        if not os.path.exists(config_path):
            logger.error(f"Configuration file not found at path: {config_path}")
            raise FileNotFoundError(f"Configuration file not found: {config_path}")
        if not os.path.isfile(config_path):
            logger.error(f"Configuration path is not a file: {config_path}")
            raise ConfigurationError(f"Configuration path is not a file: {config_path}", config_path)

        try:
            with open(config_path, 'r', encoding='utf-8') as f:
                config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            logger.error(f"Error parsing YAML configuration file {config_path}: {e}", exc_info=True)
            raise ConfigurationError(f"Invalid YAML format in {config_path}: {e}", config_path) from e
        except IOError as e:
            logger.error(f"Error reading configuration file {config_path}: {e}", exc_info=True)
            raise ConfigurationError(f"Could not read configuration file {config_path}: {e}", config_path) from e

        if config is None:
            # An empty file is a valid, if useless, configuration
            return {}
        if not isinstance(config, dict):
            logger.error(f"Configuration file {config_path} did not load as a dictionary (root object).")
            raise ConfigurationError(
                f"Invalid YAML structure in {config_path}. Root must be a mapping (dictionary).", config_path)
        logger.info(f"Configuration loaded successfully from {config_path}")
        return config

    def _apply_env(self, config: dict) -> None:
        if self.env_file and os.path.isfile(self.env_file):
            load_dotenv(self.env_file)
            logger.info(f"Loaded environment overrides from {self.env_file}")

        for env_name, key in ENV_OVERRIDES.items():
            value = os.environ.get(env_name)
            if value:
                config[key] = value
        logger.info(
            f"Environment: OPENAI_API_KEY={len(config.get('openai_api_key') or '')}B, "
            f"base_url={config.get('openai_base_url')}, asr_language={config.get('asr_language')}"
        )

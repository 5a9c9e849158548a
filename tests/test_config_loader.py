import pytest

from dubline.config_loader import ConfigLoader, DEFAULT_CONFIG, ENV_OVERRIDES
from dubline.exceptions import ConfigurationError


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ENV_OVERRIDES:
        monkeypatch.delenv(name, raising=False)


def test_defaults_without_file():
    config = ConfigLoader(env_file=None).load_config(None)
    assert config == DEFAULT_CONFIG
    assert config is not DEFAULT_CONFIG


def test_yaml_values_override_defaults(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text("asr_language: zh\nbatch_retries: 5\n")

    config = ConfigLoader(env_file=None).load_config(str(path))

    assert config['asr_language'] == "zh"
    assert config['batch_retries'] == 5
    assert config['tts_voice'] == DEFAULT_CONFIG['tts_voice']


def test_empty_file_gives_defaults(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text("")
    assert ConfigLoader(env_file=None).load_config(str(path)) == DEFAULT_CONFIG


def test_environment_wins_over_file(tmp_path, monkeypatch):
    path = tmp_path / "config.yaml"
    path.write_text("openai_api_key: from-file\n")
    monkeypatch.setenv("OPENAI_API_KEY", "from-env")
    monkeypatch.setenv("OPENAI_PROXY", "http://proxy.local/v1")

    config = ConfigLoader(env_file=None).load_config(str(path))

    assert config['openai_api_key'] == "from-env"
    assert config['openai_base_url'] == "http://proxy.local/v1"


def test_dotenv_file_is_loaded(tmp_path, monkeypatch):
    env_file = tmp_path / ".env"
    env_file.write_text("DUBLINE_WORK_DIR=/srv/dubline\n")

    config = ConfigLoader(env_file=str(env_file)).load_config(None)

    assert config['work_dir'] == "/srv/dubline"
    monkeypatch.delenv("DUBLINE_WORK_DIR")


def test_real_environment_wins_over_dotenv(tmp_path, monkeypatch):
    env_file = tmp_path / ".env"
    env_file.write_text("DUBLINE_WORK_DIR=/from/dotenv\n")
    monkeypatch.setenv("DUBLINE_WORK_DIR", "/from/env")

    config = ConfigLoader(env_file=str(env_file)).load_config(None)

    assert config["work_dir"] == "/from/env"


def test_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        ConfigLoader(env_file=None).load_config(str(tmp_path / "nope.yaml"))


@pytest.mark.parametrize("content", ["- a\n- b\n", "key: [unclosed\n"])
def test_invalid_yaml(tmp_path, content):
    path = tmp_path / "config.yaml"
    path.write_text(content)
    with pytest.raises(ConfigurationError):
        ConfigLoader(env_file=None).load_config(str(path))

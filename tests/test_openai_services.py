import json
from unittest.mock import MagicMock

import pytest
import requests

from dubline.exceptions import ConfigurationError, SynthesisError, TranscriptionError, TranslationError
from dubline.openai_api import OpenAIClient, OpenAIAPIError
from dubline.synthesizer import OpenAISpeechSynthesizer
from dubline.transcriber import OpenAITranscriber, result_from_verbose_json
from dubline.translator import ChatMessage, OpenAIChatTranslator, SYSTEM, USER

VERBOSE = {
    'task': 'transcribe',
    'language': 'english',
    'duration': 12.5,
    'text': ' Hello there. General Kenobi. ',
    'segments': [
        {'id': 0, 'seek': 0, 'start': 0.0, 'end': 4.0, 'text': ' Hello there.', 'tokens': [1, 2],
         'avg_logprob': -0.2, 'no_speech_prob': 0.01},
        {'id': 1, 'seek': 0, 'start': 4.0, 'end': 7.5, 'text': ' General Kenobi.', 'tokens': [3]},
        {'id': 2, 'start': 8.0},
    ],
}


def response(status=200, payload=None, chunks=None):
    resp = MagicMock()
    resp.status_code = status
    resp.json.return_value = payload
    resp.text = json.dumps(payload)
    resp.iter_content.return_value = chunks or []
    resp.__enter__.return_value = resp
    resp.__exit__.return_value = False
    return resp


@pytest.fixture
def client():
    c = OpenAIClient("sk-test", base_url="http://api.local/v1/", timeout=5)
    c.session = MagicMock()
    return c


def test_client_requires_key():
    with pytest.raises(ConfigurationError):
        OpenAIClient("")


def test_client_posts_to_base_url(client):
    client.session.post.return_value = response(payload={'ok': True})

    assert client.post_json('/chat/completions', json={}) == {'ok': True}

    args, kwargs = client.session.post.call_args
    assert args[0] == "http://api.local/v1/chat/completions"
    assert kwargs['timeout'] == 5


def test_client_raises_on_error_status(client):
    client.session.post.return_value = response(status=429, payload={'error': 'slow down'})
    with pytest.raises(OpenAIAPIError) as excinfo:
        client.post('chat/completions')
    assert excinfo.value.status_code == 429


def test_client_wraps_transport_errors(client):
    client.session.post.side_effect = requests.ConnectionError("refused")
    with pytest.raises(OpenAIAPIError):
        client.post('chat/completions')


def test_verbose_json_parsing():
    result = result_from_verbose_json(VERBOSE, "x.m4a")

    assert result.language == "english"
    assert result.duration == 12.5
    assert result.text == "Hello there. General Kenobi."
    assert [(s.start, s.end, s.text) for s in result.spans] == [
        (0.0, 4.0, "Hello there."), (4.0, 7.5, "General Kenobi."),
    ]
    assert result.spans[0].tokens == [1, 2]
    assert result.spans[0].avg_logprob == -0.2


def test_transcriber_uploads_excerpt(client, tmp_path):
    audio = tmp_path / "input-0.m4a"
    audio.write_bytes(b"\x00\x01")
    client.session.post.return_value = response(payload=VERBOSE)

    result = OpenAITranscriber(client).transcribe(str(audio), language="en")

    assert len(result.spans) == 2
    _, kwargs = client.session.post.call_args
    assert kwargs['data'] == {'model': 'whisper-1', 'response_format': 'verbose_json', 'language': 'en'}
    assert kwargs['files']['file'][0] == "input-0.m4a"


def test_transcriber_missing_file(client, tmp_path):
    with pytest.raises(FileNotFoundError):
        OpenAITranscriber(client).transcribe(str(tmp_path / "gone.m4a"))


def test_transcriber_wraps_api_errors(client, tmp_path):
    audio = tmp_path / "input-0.m4a"
    audio.write_bytes(b"\x00")
    client.session.post.return_value = response(status=500, payload={})
    with pytest.raises(TranscriptionError):
        OpenAITranscriber(client).transcribe(str(audio))


def test_chat_translator(client):
    client.session.post.return_value = response(payload={
        'choices': [{'message': {'role': 'assistant', 'content': ' ni hao \n'}}],
    })
    translator = OpenAIChatTranslator(client, model="chat-model")

    text = translator.complete([ChatMessage(SYSTEM, "translate"), ChatMessage(USER, "hello")], model="big-model")

    assert text == "ni hao"
    payload = client.session.post.call_args[1]['json']
    assert payload['model'] == "big-model"
    assert payload['messages'] == [
        {'role': 'system', 'content': 'translate'}, {'role': 'user', 'content': 'hello'},
    ]


@pytest.mark.parametrize("payload", [{'choices': []}, {'choices': [{'message': {'content': ''}}]}])
def test_chat_translator_rejects_unusable_reply(client, payload):
    client.session.post.return_value = response(payload=payload)
    with pytest.raises(TranslationError):
        OpenAIChatTranslator(client).complete([ChatMessage(USER, "hello")])


def test_speech_is_streamed_to_file(client, tmp_path):
    client.session.post.return_value = response(chunks=[b"abc", b"", b"def"])
    out = tmp_path / "tts-1.aac"

    OpenAISpeechSynthesizer(client).synthesize("ni hao", str(out))

    assert out.read_bytes() == b"abcdef"
    kwargs = client.session.post.call_args[1]
    assert kwargs['stream'] is True
    assert kwargs['json'] == {'model': 'tts-1', 'input': 'ni hao', 'voice': 'nova', 'response_format': 'aac'}


def test_speech_failure_removes_partial_file(client, tmp_path):
    resp = response()
    resp.iter_content.side_effect = requests.ConnectionError("reset")
    client.session.post.return_value = resp
    out = tmp_path / "tts-1.aac"

    with pytest.raises(SynthesisError):
        OpenAISpeechSynthesizer(client).synthesize("ni hao", str(out))
    assert not out.exists()


def test_speech_needs_text(client, tmp_path):
    with pytest.raises(SynthesisError):
        OpenAISpeechSynthesizer(client).synthesize("", str(tmp_path / "x.aac"))
    client.session.post.assert_not_called()

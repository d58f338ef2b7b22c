"""
Unit tests for pkb.utils.bedrock_embed and pkb.utils.bedrock_llm

The bedrock-runtime client is a MagicMock; backoff sleeps are patched out.
"""

from __future__ import annotations

import io
import json
from unittest.mock import MagicMock

import pytest
from botocore.exceptions import ClientError

from pkb.utils.bedrock_embed import BedrockEmbed, BedrockEmbedError
from pkb.utils.bedrock_llm import BedrockLLM, BedrockLLMError
from pkb.utils.config import BedrockEmbedConfig, BedrockLLMConfig


def _throttled():
    return ClientError({'Error': {'Code': 'ThrottlingException', 'Message': 'slow down'}}, 'InvokeModel')


def _body(payload):
    return {'body': io.BytesIO(json.dumps(payload).encode('utf-8'))}


@pytest.fixture(autouse=True)
def no_sleep(monkeypatch):
    monkeypatch.setattr('time.sleep', lambda seconds: None)


# ---------------------------------------------------------------------------
# Embeddings
# ---------------------------------------------------------------------------

def _embed(model_id='amazon.titan-embed-text-v2:0', dimension=3):
    config = BedrockEmbedConfig(region='us-east-1', model_id=model_id, dimension=dimension, retry_attempts=2,
                                retry_delay=0.0)
    return BedrockEmbed(config, client=MagicMock())


class TestBedrockEmbed:
    def test_titan_request_and_token_count(self):
        embed = _embed()
        embed.bedrock.invoke_model.return_value = _body({'embedding': [1, 2, 3], 'inputTextTokenCount': 4})

        assert embed.generate_embedding('hello') == [1.0, 2.0, 3.0]
        assert embed.last_token_count == 4
        request = json.loads(embed.bedrock.invoke_model.call_args.kwargs['body'])
        assert request == {'inputText': 'hello', 'dimensions': 3}

    def test_cohere_query_input_type(self):
        embed = _embed(model_id='cohere.embed-english-v3', dimension=1024)
        embed.bedrock.invoke_model.return_value = _body({'embeddings': [[0.5] * 1024]})

        assert len(embed.embed_query('q')) == 1024
        request = json.loads(embed.bedrock.invoke_model.call_args.kwargs['body'])
        assert request['input_type'] == 'search_query'

    def test_blank_text_skips_the_call(self):
        embed = _embed()
        assert embed.generate_embedding('  ') == [0.0, 0.0, 0.0]
        embed.bedrock.invoke_model.assert_not_called()

    def test_retries_then_succeeds(self):
        embed = _embed()
        embed.bedrock.invoke_model.side_effect = [_throttled(), _body({'embedding': [1, 0, 0]})]
        assert embed.generate_embedding('hello') == [1.0, 0.0, 0.0]
        assert embed.bedrock.invoke_model.call_count == 2

    def test_exhausted_retries(self):
        embed = _embed()
        embed.bedrock.invoke_model.side_effect = _throttled()
        with pytest.raises(BedrockEmbedError, match='after 2 attempts'):
            embed.generate_embedding('hello')

    def test_unsupported_model(self):
        with pytest.raises(BedrockEmbedError, match='Unsupported'):
            _embed(model_id='mystery.model').generate_embedding('hello')


# ---------------------------------------------------------------------------
# LLM
# ---------------------------------------------------------------------------

def _llm():
    config = BedrockLLMConfig(region='us-east-1', model_id='anthropic.claude-3-haiku-20240307-v1:0', max_tokens=300,
                              temperature=0.2, retry_attempts=2, retry_delay=0.0, read_timeout=30)
    return BedrockLLM(config, client=MagicMock())


def _stream(*chunks):
    events = [{'contentBlockDelta': {'delta': {'text': chunk}}} for chunk in chunks]
    events.append({'metadata': {'usage': {'inputTokens': 5}, 'metrics': {'latencyMs': 10}}})
    return {'stream': events}


class TestBedrockLLM:
    def test_complete_with_prefill(self):
        llm = _llm()
        llm.bedrock_runtime.converse_stream.return_value = _stream('{"isRelated": ', 'true}')

        text = llm.complete('Compare these', system_prompt='judge', prefill='```json', stop_sequences=['```'])

        assert text == '{"isRelated": true}'
        kwargs = llm.bedrock_runtime.converse_stream.call_args.kwargs
        assert kwargs['messages'][-1] == {'role': 'assistant', 'content': [{'text': '```json'}]}
        assert kwargs['inferenceConfig'] == {'maxTokens': 300, 'temperature': 0.2, 'stopSequences': ['```']}

    def test_explicit_zero_temperature_is_kept(self):
        llm = _llm()
        llm.bedrock_runtime.converse_stream.return_value = _stream('OK')
        llm.complete('Hi', system_prompt='s', temperature=0.0)
        assert llm.bedrock_runtime.converse_stream.call_args.kwargs['inferenceConfig']['temperature'] == 0.0

    def test_metrics_are_returned(self):
        llm = _llm()
        llm.bedrock_runtime.converse_stream.return_value = _stream('OK')
        _, metrics = llm.generate_response([{'role': 'user', 'content': [{'text': 'Hi'}]}], system_prompt='s')
        assert metrics == {'inputTokens': 5, 'latencyMs': 10}

    def test_exhausted_retries(self):
        llm = _llm()
        llm.bedrock_runtime.converse_stream.side_effect = _throttled()
        with pytest.raises(BedrockLLMError):
            llm.complete('Hi', system_prompt='s')
        assert llm.bedrock_runtime.converse_stream.call_count == 2

    def test_health_check_failure(self):
        llm = _llm()
        llm.bedrock_runtime.converse_stream.side_effect = RuntimeError('no network')
        assert llm.health_check() is False

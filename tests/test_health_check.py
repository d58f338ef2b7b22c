"""
Unit tests for pkb.utils.health_check
"""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from pkb.utils import health_check
from pkb.utils.config import config


@pytest.fixture
def clients(monkeypatch):
    mocks = {}
    for name in ('BedrockLLM', 'BedrockEmbed', 'OpenSearchClient', 'NeptuneClient'):
        mock = MagicMock()
        mock.return_value.health_check.return_value = True
        monkeypatch.setattr(health_check, name, mock)
        mocks[name] = mock
    return mocks


class TestHealthStatus:
    def test_neptune_skipped_when_disabled(self, clients, monkeypatch):
        monkeypatch.setattr(config.neptune, 'enabled', False)
        status = health_check.get_health_status()
        assert set(status) == {'bedrock_llm', 'bedrock_embed', 'opensearch'}
        clients['NeptuneClient'].assert_not_called()
        assert health_check.check_health() is True

    def test_neptune_probed_and_closed_when_enabled(self, clients, monkeypatch):
        monkeypatch.setattr(config.neptune, 'enabled', True)
        status = health_check.get_health_status()
        assert status['neptune']['healthy'] is True
        clients['NeptuneClient'].return_value.close.assert_called_once()

    def test_construction_failure_marks_component_unhealthy(self, clients, monkeypatch):
        monkeypatch.setattr(config.neptune, 'enabled', False)
        clients['OpenSearchClient'].side_effect = RuntimeError('no credentials')

        status = health_check.get_health_status()

        assert status['opensearch'] == {'healthy': False, 'service': 'Amazon OpenSearch', 'error': 'no credentials'}
        assert health_check.check_health() is False

    def test_system_info(self, clients, monkeypatch):
        monkeypatch.setattr(config.neptune, 'enabled', False)
        info = health_check.get_system_info()
        assert info['service_name'] == 'pkb-core'
        assert info['configuration']['opensearch_index'] == config.opensearch.index_name

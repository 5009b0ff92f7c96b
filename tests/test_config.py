"""
Unit tests for configuration loading and validation.

Tests strict validation and error handling for chat guard configs.
"""

import os
import tempfile

import pytest
import yaml

from ai_chat_guard.config.loader import (
    BackoffConfig,
    ChatGuardConfig,
    ModelEndpointConfig,
    load_config,
    parse_config,
)


def _endpoint(**overrides):
    data = {"id": "primary", "priority": 1}
    data.update(overrides)
    return data


class TestConfigLoading:
    """Test configuration loading and validation."""

    def setup_method(self):
        """Set up test environment."""
        self.temp_dir = tempfile.mkdtemp()

    def teardown_method(self):
        """Clean up test environment."""
        import shutil
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def _write_config(self, config_data, filename: str = "config.yaml") -> str:
        """Write configuration data to temporary file."""
        config_path = os.path.join(self.temp_dir, filename)
        with open(config_path, 'w', encoding='utf-8') as f:
            yaml.dump(config_data, f)
        return config_path

    def test_valid_config_loads_correctly(self):
        """Test that a valid configuration loads correctly."""
        config_data = {
            "endpoints": [
                {
                    "id": "primary",
                    "model": "gpt-4o",
                    "priority": 1,
                    "retry_budget": 3,
                    "timeout_seconds": 20,
                },
                {
                    "id": "speech",
                    "model": "gpt-4o-audio-preview",
                    "priority": 2,
                    "capabilities": ["Audio"],
                },
            ],
            "backoff": {"base_delay": 1, "max_delay": 4, "jitter": 0.5},
            "quota": {"free_questions": 7},
            "access": {"privileged_roles": ["Admin", "superadmin"]},
            "persistence": {"timeout_seconds": 3},
            "backend": {"base_url": "https://example.test/v1", "api_key_env": "TEST_KEY"},
        }
        config = load_config(self._write_config(config_data))

        assert isinstance(config, ChatGuardConfig)
        primary, speech = config.endpoints
        assert primary == ModelEndpointConfig(
            id="primary", model="gpt-4o", priority=1, retry_budget=3, timeout_seconds=20.0
        )
        assert speech.capabilities == frozenset({"audio"})
        assert speech.retry_budget == 2
        assert config.backoff == BackoffConfig(base_delay=1.0, max_delay=4.0, jitter=0.5)
        assert config.quota.free_questions == 7
        assert config.access.privileged_roles == frozenset({"admin", "superadmin"})
        assert config.persistence.timeout_seconds == 3.0
        assert config.backend.base_url == "https://example.test/v1"
        assert config.backend.api_key_env == "TEST_KEY"

    def test_defaults_applied(self):
        """Optional sections fall back to documented defaults."""
        config = load_config(self._write_config({"endpoints": [_endpoint()]}))

        assert config.endpoints[0].model == "primary"
        assert config.quota.free_questions == 5
        assert config.access.privileged_roles == frozenset({"admin"})
        assert config.backoff == BackoffConfig()
        assert config.backend.api_key_env == "OPENAI_API_KEY"

    def test_file_not_found(self):
        with pytest.raises(FileNotFoundError, match="Config file not found"):
            load_config(os.path.join(self.temp_dir, "missing.yaml"))

    def test_invalid_yaml(self):
        path = os.path.join(self.temp_dir, "broken.yaml")
        with open(path, 'w', encoding='utf-8') as f:
            f.write("endpoints: [unclosed\n")
        with pytest.raises(yaml.YAMLError, match="Invalid YAML"):
            load_config(path)

    def test_empty_file(self):
        path = os.path.join(self.temp_dir, "empty.yaml")
        open(path, 'w').close()
        with pytest.raises(ValueError, match="Configuration file is empty"):
            load_config(path)


class TestConfigValidation:
    """Test rejection of invalid configuration values."""

    def test_unknown_top_level_key(self):
        with pytest.raises(ValueError, match="Unknown keys in configuration"):
            parse_config({"endpoints": [_endpoint()], "budget": {}})

    def test_missing_endpoints(self):
        with pytest.raises(ValueError, match="Missing required 'endpoints'"):
            parse_config({"quota": {"free_questions": 5}})

    def test_empty_endpoints(self):
        with pytest.raises(ValueError, match="non-empty list"):
            parse_config({"endpoints": []})

    def test_unknown_endpoint_key(self):
        with pytest.raises(ValueError, match=r"Unknown keys in endpoints\[0\]"):
            parse_config({"endpoints": [_endpoint(weight=3)]})

    def test_missing_priority(self):
        with pytest.raises(ValueError, match="Missing required 'priority'"):
            parse_config({"endpoints": [{"id": "primary"}]})

    def test_non_integer_retry_budget(self):
        with pytest.raises(ValueError, match="'retry_budget'.*must be an integer"):
            parse_config({"endpoints": [_endpoint(retry_budget="three")]})

    def test_zero_retry_budget(self):
        with pytest.raises(ValueError, match="retry_budget must be >= 1"):
            parse_config({"endpoints": [_endpoint(retry_budget=0)]})

    def test_non_positive_timeout(self):
        with pytest.raises(ValueError, match="timeout_seconds must be > 0"):
            parse_config({"endpoints": [_endpoint(timeout_seconds=0)]})

    def test_duplicate_endpoint_ids(self):
        with pytest.raises(ValueError, match="Duplicate endpoint ids"):
            parse_config({"endpoints": [_endpoint(), _endpoint(priority=2)]})

    def test_jitter_out_of_range(self):
        with pytest.raises(ValueError, match="jitter must be between 0 and 1"):
            parse_config({"endpoints": [_endpoint()], "backoff": {"jitter": 1.5}})

    def test_max_delay_below_base(self):
        with pytest.raises(ValueError, match="max_delay must be >= base_delay"):
            parse_config({
                "endpoints": [_endpoint()],
                "backoff": {"base_delay": 2, "max_delay": 1},
            })

    def test_negative_quota(self):
        with pytest.raises(ValueError, match="free_questions must be >= 0"):
            parse_config({"endpoints": [_endpoint()], "quota": {"free_questions": -1}})

    def test_privileged_roles_must_be_strings(self):
        with pytest.raises(ValueError, match="list of strings"):
            parse_config({"endpoints": [_endpoint()], "access": {"privileged_roles": "admin"}})


class TestFallbackChain:
    """Test endpoint ordering."""

    def test_sorted_by_priority(self):
        config = parse_config({"endpoints": [
            _endpoint(id="slow", priority=3),
            _endpoint(id="fast", priority=1),
            _endpoint(id="mid", priority=2),
        ]})
        assert [e.id for e in config.fallback_chain()] == ["fast", "mid", "slow"]

    def test_ties_keep_declaration_order(self):
        config = parse_config({"endpoints": [
            _endpoint(id="b", priority=1),
            _endpoint(id="a", priority=1),
        ]})
        assert [e.id for e in config.fallback_chain()] == ["b", "a"]

    def test_supports_capabilities(self):
        endpoint = ModelEndpointConfig(
            id="speech", model="m", priority=1, capabilities=frozenset({"audio"})
        )
        assert endpoint.supports(frozenset())
        assert endpoint.supports(frozenset({"audio"}))
        assert not endpoint.supports(frozenset({"video"}))

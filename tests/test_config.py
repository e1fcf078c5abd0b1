"""
Unit tests for configuration loading and validation.

Tests strict validation and error handling for advisor configs.
"""

import os
import tempfile

import pytest
import yaml

from cloud_cost_advisor.config.loader import (
    AdvisorConfig,
    ChatConfig,
    EmailConfig,
    ExecutionConfig,
    ThresholdConfig,
    default_config,
    load_advisor_config,
)


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

    def _write_text(self, text: str, filename: str = "config.yaml") -> str:
        config_path = os.path.join(self.temp_dir, filename)
        with open(config_path, 'w', encoding='utf-8') as f:
            f.write(text)
        return config_path

    def test_valid_config_loads_correctly(self):
        """Test that a valid configuration loads correctly."""
        config_data = {
            "thresholds": {"min_confidence": 0.8, "min_samples": 48},
            "rules": {"rightsizing_max_average": 0.35, "spot_discount": 0.6},
            "commitment": {"long_term_min_hours": 4000},
            "execution": {"call_timeout_seconds": 10, "lock_wait_seconds": 2.5, "max_workers": 8},
            "approvers": ["alice", "bob"],
            "notifications": {
                "email": {
                    "smtp_host": "smtp.example.com",
                    "sender": "advisor@example.com",
                    "recipients": ["ops@example.com"],
                    "smtp_port": 465,
                },
                "chat": {"webhook_url": "https://hooks.example.com/T000", "channel": "#finops"},
            },
        }
        config = load_advisor_config(self._write_config(config_data))

        assert config.thresholds == ThresholdConfig(min_confidence=0.8, min_samples=48)
        assert config.rules.rightsizing_max_average == 0.35
        assert config.rules.spot_discount == 0.6
        assert config.rules.reserved_discount == 0.4
        assert config.commitment.long_term_min_hours == 4000
        assert config.execution == ExecutionConfig(10.0, 2.5, 8)
        assert config.approvers == ("alice", "bob")
        assert config.notifications.email == EmailConfig(
            smtp_host="smtp.example.com",
            sender="advisor@example.com",
            recipients=("ops@example.com",),
            smtp_port=465,
        )
        assert config.notifications.chat == ChatConfig(
            webhook_url="https://hooks.example.com/T000", channel="#finops",
        )

    def test_partial_config_keeps_defaults(self):
        config = load_advisor_config(self._write_config({"thresholds": {"min_samples": 10}}))

        assert config.thresholds.min_samples == 10
        assert config.thresholds.min_confidence == 0.7
        assert config.execution == ExecutionConfig()
        assert config.approvers is None
        assert config.notifications.email is None

    def test_default_config(self):
        assert default_config() == AdvisorConfig()
        assert default_config().thresholds.min_confidence == 0.7

    def test_null_lock_wait_means_wait_forever(self):
        config = load_advisor_config(self._write_config({"execution": {"lock_wait_seconds": None}}))
        assert config.execution.lock_wait_seconds is None

    def test_missing_file(self):
        with pytest.raises(FileNotFoundError):
            load_advisor_config(os.path.join(self.temp_dir, "nope.yaml"))

    def test_empty_file(self):
        with pytest.raises(ValueError, match="empty"):
            load_advisor_config(self._write_text(""))

    def test_invalid_yaml(self):
        with pytest.raises(yaml.YAMLError):
            load_advisor_config(self._write_text("thresholds: [unclosed"))

    def test_top_level_must_be_mapping(self):
        with pytest.raises(ValueError, match="mapping"):
            load_advisor_config(self._write_config(["a", "b"]))

    def test_unknown_top_level_key(self):
        with pytest.raises(ValueError, match="Unknown configuration keys"):
            load_advisor_config(self._write_config({"budget": {"daily": 10}}))

    def test_unknown_section_key(self):
        with pytest.raises(ValueError, match="Unknown keys in thresholds"):
            load_advisor_config(self._write_config({"thresholds": {"min_confidnce": 0.8}}))

    def test_section_must_be_dictionary(self):
        with pytest.raises(ValueError, match="'rules' must be a dictionary"):
            load_advisor_config(self._write_config({"rules": [0.4]}))

    def test_wrong_types(self):
        with pytest.raises(ValueError, match="must be a number"):
            load_advisor_config(self._write_config({"thresholds": {"min_confidence": "high"}}))
        with pytest.raises(ValueError, match="must be an integer"):
            load_advisor_config(self._write_config({"thresholds": {"min_samples": True}}))
        with pytest.raises(ValueError, match="must be an integer"):
            load_advisor_config(self._write_config({"execution": {"max_workers": 2.5}}))

    def test_out_of_range_values(self):
        with pytest.raises(ValueError, match="Invalid thresholds"):
            load_advisor_config(self._write_config({"thresholds": {"min_confidence": 1.5}}))
        with pytest.raises(ValueError, match="Invalid rules"):
            load_advisor_config(self._write_config({"rules": {"reserved_discount": -0.1}}))
        with pytest.raises(ValueError, match="Invalid execution"):
            load_advisor_config(self._write_config({"execution": {"call_timeout_seconds": 0}}))
        with pytest.raises(ValueError, match="rollback_grace_seconds"):
            load_advisor_config(self._write_config({"execution": {"rollback_grace_seconds": -1}}))

    def test_approvers_must_be_list_of_names(self):
        with pytest.raises(ValueError, match="must be a list"):
            load_advisor_config(self._write_config({"approvers": "alice"}))
        with pytest.raises(ValueError, match="non-empty string"):
            load_advisor_config(self._write_config({"approvers": ["alice", ""]}))

    def test_email_requires_recipients(self):
        config_data = {
            "notifications": {
                "email": {"smtp_host": "smtp.example.com", "sender": "a@example.com"},
            },
        }
        with pytest.raises(ValueError, match="Missing required 'recipients'"):
            load_advisor_config(self._write_config(config_data))

    def test_chat_requires_http_url(self):
        config_data = {"notifications": {"chat": {"webhook_url": "ftp://example.com"}}}
        with pytest.raises(ValueError, match="http"):
            load_advisor_config(self._write_config(config_data))

    def test_unknown_notification_channel(self):
        with pytest.raises(ValueError, match="Unknown keys in notifications"):
            load_advisor_config(self._write_config({"notifications": {"pager": {}}}))

"""Tests for configuration defaults, environment expansion and the manager."""

import json
import os
from unittest.mock import patch

import pytest
import yaml

from cloudcraft.config import AppConfig, ConfigurationManager, expand_env_vars
from cloudcraft.config.defaults import LogDestination, LogLevel
from cloudcraft.domain.core.exceptions import ConfigurationError


@pytest.fixture(autouse=True)
def no_user_config(monkeypatch, tmp_path):
    monkeypatch.setenv("CLOUDCRAFT_CONFIG", str(tmp_path / "absent.yaml"))
    for name in ("AWS_REGION", "GOOGLE_PROJECT", "CLOUDCRAFT_LOG_LEVEL", "CLOUDCRAFT_AWS_IMAGE_ID",
                 "OS_AUTH_URL", "OS_USERNAME", "OS_REGION_NAME"):
        monkeypatch.delenv(name, raising=False)


@pytest.mark.unit
class TestEnvironmentVariableExpansion:

    def test_expand_with_default(self):
        assert expand_env_vars("${CLOUDCRAFT_TEST_UNSET:fallback}") == "fallback"

    def test_expand_set_variable(self):
        with patch.dict(os.environ, {"CLOUDCRAFT_TEST_VAR": "/srv/cloudcraft"}):
            assert expand_env_vars("${CLOUDCRAFT_TEST_VAR:/tmp}/logs") == "/srv/cloudcraft/logs"

    def test_unset_variable_without_default_is_empty(self):
        assert expand_env_vars("${CLOUDCRAFT_TEST_UNSET}") == ""

    def test_expand_nested_structures(self):
        with patch.dict(os.environ, {"CLOUDCRAFT_TEST_VAR": "x"}):
            result = expand_env_vars({"a": ["${CLOUDCRAFT_TEST_VAR}", 3], "b": {"c": "${CLOUDCRAFT_TEST_VAR}"}})
        assert result == {"a": ["x", 3], "b": {"c": "x"}}

    def test_non_strings_are_untouched(self):
        assert expand_env_vars(10) == 10
        assert expand_env_vars(None) is None


@pytest.mark.unit
class TestConfigurationManager:

    def test_defaults(self):
        config = ConfigurationManager().app_config

        assert isinstance(config, AppConfig)
        assert config.logging.level == LogLevel.WARNING
        assert config.logging.destination == LogDestination.STDOUT
        assert config.aws.region == "eu-central-1"
        assert config.aws.image_id == ""
        assert config.gce.zone == "europe-west6-a"
        assert config.multipass.binary == "multipass"
        assert config.polling.instance_boot_timeout == 1800
        assert config.polling.aws_interval == 10
        assert config.polling.gce_interval == 2

    def test_environment_overrides_defaults(self, monkeypatch):
        monkeypatch.setenv("AWS_REGION", "us-west-2")
        monkeypatch.setenv("GOOGLE_PROJECT", "my-project")
        monkeypatch.setenv("CLOUDCRAFT_LOG_LEVEL", "debug")

        config = ConfigurationManager().app_config

        assert config.aws.region == "us-west-2"
        assert config.gce.project == "my-project"
        assert config.logging.level == LogLevel.DEBUG

    def test_openstack_clouds(self, monkeypatch):
        monkeypatch.setenv("OS_USERNAME", "player")
        monkeypatch.setenv("OS_REGION_NAME", "ams2")

        config = ConfigurationManager().app_config

        assert config.fuga.auth_url == "https://core.fuga.cloud:5000/v3"
        assert config.fuga.image_name == "Ubuntu 22.04 LTS"
        assert config.vexxhost.auth_url == "https://auth.vexxhost.net/v3"
        assert config.vexxhost.image_name == "Ubuntu 20.04.3 LTS"
        assert config.fuga.username == config.vexxhost.username == "player"
        assert config.fuga.region == "ams2"
        assert config.polling.openstack_interval == 2

    def test_multipass_users(self):
        config = ConfigurationManager().app_config

        assert (config.multipass.ssh_user, config.multipass.upload_user) == ("ubuntu", "root")

    def test_yaml_file_is_deep_merged(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text(yaml.safe_dump({"polling": {"aws_interval": 1}, "aws": {"profile": "games"}}))

        config = ConfigurationManager(str(path)).app_config

        assert config.polling.aws_interval == 1
        assert config.polling.instance_boot_timeout == 1800
        assert config.aws.profile == "games"
        assert config.aws.region == "eu-central-1"

    def test_json_file(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text(json.dumps({"multipass": {"image": "noble"}}))

        assert ConfigurationManager(str(path)).app_config.multipass.image == "noble"

    def test_default_path_from_environment(self, monkeypatch, tmp_path):
        path = tmp_path / "custom.yaml"
        path.write_text(yaml.safe_dump({"gce": {"zone": "us-central1-a"}}))
        monkeypatch.setenv("CLOUDCRAFT_CONFIG", str(path))

        assert ConfigurationManager().app_config.gce.zone == "us-central1-a"

    def test_update_config_invalidates_cached_model(self):
        manager = ConfigurationManager()
        assert manager.app_config.aws.ssh_user == "ubuntu"

        manager.update_config({"aws": {"ssh_user": "admin"}})

        assert manager.app_config.aws.ssh_user == "admin"

    def test_missing_file_raises(self, tmp_path):
        with pytest.raises(ConfigurationError, match="Failed to load"):
            ConfigurationManager(str(tmp_path / "missing.yaml"))

    def test_non_mapping_file_raises(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("- just\n- a list\n")

        with pytest.raises(ConfigurationError, match="must contain a mapping"):
            ConfigurationManager(str(path))

    def test_invalid_values_raise_configuration_error(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text(yaml.safe_dump({"polling": {"aws_interval": -5}, "aws": {"unknown_key": 1}}))

        with pytest.raises(ConfigurationError) as exc_info:
            ConfigurationManager(str(path)).app_config

        assert "polling.aws_interval" in exc_info.value.missing_fields
        assert "aws.unknown_key" in exc_info.value.missing_fields


@pytest.mark.unit
class TestPollingConfig:

    def test_policies(self):
        polling = AppConfig().polling

        assert polling.boot_policy(10).timeout == 1800
        assert polling.termination_policy().interval == 2
        assert polling.termination_policy().timeout == 600
        assert polling.spot_policy().timeout == 600

    def test_log_file_path_is_expanded(self):
        config = AppConfig.model_validate({"logging": {"file": {"path": "~/x.log"}}})

        assert not config.logging.file.path.startswith("~")

"""
Tests for lib/config.py configuration loading.

Covers:
- parse_id_list trimming and de-duplication
- Environment variable config
- YAML config files and ${VAR} substitution
- Merge priority (env < file < CLI)
- Settings validation
- Interactive prompts
"""
import argparse
import os
import sys

import pytest

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from lib.config import (
    ConfigError,
    ExportSettings,
    args_to_config,
    config_to_settings,
    generate_sample_config,
    load_config,
    load_config_file,
    load_env_config,
    merge_configs,
    parse_id_list,
    prompt_for_missing,
)
from lib.constants import DEFAULT_OUTPUT_PATH, OUTPUT_MODE_COMBINED, OUTPUT_MODE_PER_SUBSCRIPTION


def make_args(**kwargs):
    """Build an argparse namespace with every CLI option unset."""
    defaults = {
        'config': None,
        'output': None,
        'output_mode': None,
        'log_level': None,
        'log_dir': None,
        'subscriptions': None,
        'regions': None,
        'all_subscriptions': False,
    }
    defaults.update(kwargs)
    return argparse.Namespace(**defaults)


@pytest.fixture(autouse=True)
def clean_environment(tmp_path, monkeypatch):
    """Keep real VMX_* variables and default config files out of the tests."""
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("HOME", str(tmp_path))
    for name in list(os.environ):
        if name.startswith("VMX_"):
            monkeypatch.delenv(name)


# =============================================================================
# parse_id_list Tests
# =============================================================================

class TestParseIdList:
    """Tests for parse_id_list."""

    def test_comma_separated(self):
        assert parse_id_list("sub1,sub2") == ["sub1", "sub2"]

    def test_whitespace_trimmed(self):
        assert parse_id_list("  sub1 ,\tsub2  ") == ["sub1", "sub2"]

    def test_empty_entries_dropped(self):
        assert parse_id_list("sub1,,sub2,") == ["sub1", "sub2"]

    def test_duplicates_keep_first(self):
        assert parse_id_list("sub2,sub1,sub2") == ["sub2", "sub1"]

    def test_list_input(self):
        assert parse_id_list([" sub1", None, "sub2"]) == ["sub1", "sub2"]

    def test_empty(self):
        assert parse_id_list(None) == []
        assert parse_id_list("") == []


# =============================================================================
# Environment Tests
# =============================================================================

class TestEnvConfig:
    """Tests for load_env_config."""

    def test_no_env(self):
        assert load_env_config() == {}

    def test_env_values(self, monkeypatch):
        monkeypatch.setenv("VMX_OUTPUT", "env.csv")
        monkeypatch.setenv("VMX_SUBSCRIPTIONS", "sub1, sub2")
        monkeypatch.setenv("VMX_ALL_SUBSCRIPTIONS", "yes")

        config = load_env_config()

        assert config['output'] == "env.csv"
        assert config['azure']['subscriptions'] == ["sub1", "sub2"]
        assert config['azure']['all_subscriptions'] is True


# =============================================================================
# Config File Tests
# =============================================================================

class TestConfigFile:
    """Tests for load_config_file."""

    def test_load_yaml(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text(
            "output: out.csv\n"
            "azure:\n"
            "  subscriptions:\n"
            "    - sub1\n"
            "    - sub2\n",
            encoding='utf-8'
        )

        config = load_config_file(str(path))

        assert config['output'] == "out.csv"
        assert config['azure']['subscriptions'] == ["sub1", "sub2"]

    def test_env_substitution(self, tmp_path, monkeypatch):
        monkeypatch.setenv("REPORT_DIR", "/data/reports")
        path = tmp_path / "config.yaml"
        path.write_text(
            "output: ${REPORT_DIR}/vms.csv\n"
            "log_level: ${MISSING_LEVEL:-WARNING}\n",
            encoding='utf-8'
        )

        config = load_config_file(str(path))

        assert config['output'] == "/data/reports/vms.csv"
        assert config['log_level'] == "WARNING"

    def test_substituted_boolean_default(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text(
            "azure:\n"
            "  subscriptions: [sub1]\n"
            "  all_subscriptions: ${VMX_TEST_ALL:-false}\n",
            encoding='utf-8'
        )

        settings = load_config(make_args(config=str(path)))

        assert settings.subscription_ids == ["sub1"]
        assert settings.all_subscriptions is False

    def test_quoted_false_in_yaml(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("azure:\n  all_subscriptions: \"false\"\n", encoding='utf-8')

        settings = load_config(make_args(config=str(path)))

        assert settings.all_subscriptions is False

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_config_file(str(tmp_path / "nope.yaml"))

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("output: [unclosed\n", encoding='utf-8')

        with pytest.raises(ConfigError):
            load_config_file(str(path))

    def test_non_mapping(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("- just\n- a list\n", encoding='utf-8')

        with pytest.raises(ConfigError):
            load_config_file(str(path))

    def test_sample_config_parses(self, tmp_path):
        path = tmp_path / "sample.yaml"
        path.write_text(generate_sample_config(), encoding='utf-8')

        settings = config_to_settings(load_config_file(str(path)))

        assert settings.output_mode == OUTPUT_MODE_COMBINED
        assert settings.subscription_ids == ["xxxxxxxx-xxxx-xxxx-xxxx-xxxxxxxxxxxx"]


# =============================================================================
# Merge Tests
# =============================================================================

class TestMergeConfigs:
    """Tests for merge_configs and load_config priority."""

    def test_later_overrides_earlier(self):
        merged = merge_configs({'output': 'a.csv'}, {'output': 'b.csv'})
        assert merged['output'] == 'b.csv'

    def test_nested_merge(self):
        merged = merge_configs(
            {'azure': {'subscriptions': ['sub1'], 'regions': ['eastus']}},
            {'azure': {'subscriptions': ['sub2']}},
        )
        assert merged['azure'] == {'subscriptions': ['sub2'], 'regions': ['eastus']}

    def test_none_does_not_override(self):
        merged = merge_configs({'output': 'a.csv'}, {'output': None})
        assert merged['output'] == 'a.csv'

    def test_priority_env_file_cli(self, tmp_path, monkeypatch):
        monkeypatch.setenv("VMX_OUTPUT", "env.csv")
        monkeypatch.setenv("VMX_LOG_LEVEL", "DEBUG")
        monkeypatch.setenv("VMX_SUBSCRIPTIONS", "env-sub")
        path = tmp_path / "config.yaml"
        path.write_text("output: file.csv\nlog_level: WARNING\n", encoding='utf-8')

        settings = load_config(make_args(config=str(path), output="cli.csv"))

        assert settings.output_path == "cli.csv"
        assert settings.log_level == "WARNING"
        assert settings.subscription_ids == ["env-sub"]

    def test_default_config_file_found(self, tmp_path):
        (tmp_path / "vm-export.yaml").write_text("output_mode: per-subscription\n", encoding='utf-8')

        settings = load_config(make_args())

        assert settings.output_mode == OUTPUT_MODE_PER_SUBSCRIPTION

    def test_args_to_config(self):
        config = args_to_config(make_args(subscriptions="sub1, sub2", regions="EastUS", all_subscriptions=True))

        assert config['azure']['subscriptions'] == ["sub1", "sub2"]
        assert config['azure']['regions'] == ["EastUS"]
        assert config['azure']['all_subscriptions'] is True


# =============================================================================
# Settings Tests
# =============================================================================

class TestConfigToSettings:
    """Tests for config_to_settings."""

    def test_defaults(self):
        settings = config_to_settings({})

        assert settings.output_path == DEFAULT_OUTPUT_PATH
        assert settings.subscription_ids == []
        assert settings.output_mode == OUTPUT_MODE_COMBINED
        assert settings.log_level == "INFO"

    def test_regions_lowercased(self):
        settings = config_to_settings({'azure': {'regions': ['EastUS', 'westus2']}})
        assert settings.regions == ['eastus', 'westus2']

    def test_invalid_output_mode(self):
        with pytest.raises(ConfigError):
            config_to_settings({'output_mode': 'sideways'})

    def test_string_false_all_subscriptions(self):
        settings = config_to_settings({'azure': {'all_subscriptions': 'false'}})
        assert settings.all_subscriptions is False

    def test_string_true_all_subscriptions(self):
        settings = config_to_settings({'azure': {'all_subscriptions': 'Yes'}})
        assert settings.all_subscriptions is True

    def test_numeric_log_level_becomes_string(self):
        settings = config_to_settings({'log_level': 10})
        assert settings.log_level == "10"


# =============================================================================
# Interactive Prompt Tests
# =============================================================================

class TestPromptForMissing:
    """Tests for prompt_for_missing."""

    def test_prompts_when_no_subscriptions(self):
        answers = iter(["prompted.csv", " sub1 , sub2 "])
        settings = prompt_for_missing(ExportSettings(), input_fn=lambda prompt: next(answers))

        assert settings.output_path == "prompted.csv"
        assert settings.subscription_ids == ["sub1", "sub2"]

    def test_blank_output_keeps_default(self):
        answers = iter(["", "sub1"])
        settings = prompt_for_missing(ExportSettings(), input_fn=lambda prompt: next(answers))

        assert settings.output_path == DEFAULT_OUTPUT_PATH

    def test_no_prompt_when_configured(self):
        def fail(prompt):
            raise AssertionError("should not prompt")

        settings = prompt_for_missing(ExportSettings(subscription_ids=["sub1"]), input_fn=fail)

        assert settings.subscription_ids == ["sub1"]

"""Tests for configuration management.

Covers defaults, validation, path anchoring and the TOML round trip.
"""

from pathlib import Path

import hypothesis.strategies as st
import pytest
from hypothesis import given

from wikiportable.config import (
    Configuration,
    ConfigurationError,
    LoggingConfig,
    MergeConfig,
    RetentionConfig,
    ServerConfig,
    StorageConfig,
    ValidationError,
    create_default_config,
    format_config,
    parse_config,
    parse_config_string,
)


# Generate valid paths (non-empty, no null bytes)
valid_path_str = st.text(
    alphabet=st.characters(
        whitelist_categories=("L", "N", "P", "S"),
        blacklist_characters="\x00\n\r",
    ),
    min_size=1,
    max_size=50,
).filter(lambda s: s.strip())

valid_file_name = st.text(
    alphabet=st.characters(whitelist_categories=("L", "N"), max_codepoint=0x7f),
    min_size=1,
    max_size=20,
).map(lambda s: f"{s}.json")

# Any text, control characters included
any_text = st.text(alphabet=st.characters(blacklist_categories=("Cs",)), max_size=30)

valid_log_levels = st.sampled_from(["DEBUG", "INFO", "WARNING", "ERROR"])


@st.composite
def configurations(draw):
    """Generate valid Configuration instances."""
    return Configuration(
        storage=StorageConfig(
            data_dir=Path("/tmp/wiki") / draw(valid_path_str),
            data_file=draw(valid_file_name),
            backup_dir=Path("/tmp/backups") / draw(valid_path_str),
            atomic_writes=draw(st.booleans()),
            seed_on_start=draw(st.booleans()),
            lock_timeout_seconds=draw(st.integers(min_value=0, max_value=60)),
        ),
        retention=RetentionConfig(
            max_backups=draw(st.integers(min_value=1, max_value=1000)),
        ),
        server=ServerConfig(
            host=draw(st.sampled_from(["127.0.0.1", "0.0.0.0", "localhost"])),
            port=draw(st.integers(min_value=0, max_value=65535)),
            max_content_mb=draw(st.integers(min_value=1, max_value=500)),
            cors_origins=draw(st.lists(valid_path_str, max_size=3)),
        ),
        merge=MergeConfig(title_suffix=draw(any_text)),
        logging=LoggingConfig(
            level=draw(valid_log_levels),
            log_file=Path("/tmp/logs") / draw(valid_path_str),
            error_log_file=Path("/tmp/logs") / draw(valid_path_str),
        ),
    )


class TestConfigurationRoundTrip:
    """
    Formatting a Configuration to TOML and parsing the result produces an
    equivalent Configuration.
    """

    @given(config=configurations())
    def test_round_trip_preserves_configuration(self, config: Configuration):
        parsed = parse_config_string(format_config(config))
        assert parsed == config

    def test_control_characters_escaped(self):
        config = Configuration(merge=MergeConfig(title_suffix=" (imported)\n\t\x01\x7f\"\\"))

        content = format_config(config)

        assert 'title_suffix = " (imported)\\n\\t\\u0001\\u007F\\"\\\\"' in content
        assert parse_config_string(content).merge.title_suffix == config.merge.title_suffix


class TestDefaults:
    """Every setting has a default."""

    def test_empty_file_gives_defaults(self):
        config = parse_config_string("")

        assert config.storage.data_file == "wiki_data.json"
        assert config.storage.data_dir == Path("data")
        assert config.storage.backup_dir == Path("backups")
        assert config.storage.atomic_writes is False
        assert config.retention.max_backups == 30
        assert config.server.port == 3000
        assert config.server.max_content_bytes == 50 * 1024 * 1024
        assert config.server.cors_origins == ["*"]
        assert config.merge.title_suffix == " (imported)"

    def test_default_template_parses_to_defaults(self):
        assert parse_config_string(create_default_config()) == Configuration()

    def test_data_and_lock_paths(self):
        storage = StorageConfig(data_dir=Path("/srv/wiki"), data_file="pages.json")

        assert storage.data_path == Path("/srv/wiki/pages.json")
        assert storage.lock_path == Path("/srv/wiki/.wiki.lock")

    def test_partial_section_keeps_other_defaults(self):
        config = parse_config_string("[retention]\nmax_backups = 5\n")

        assert config.retention.max_backups == 5
        assert config.server.port == 3000


class TestValidation:
    """Invalid files and values are rejected with a clear error."""

    def test_malformed_toml(self):
        with pytest.raises(ConfigurationError, match="Invalid TOML"):
            parse_config_string("[storage\ndata_dir = ")

    def test_wrong_type(self):
        with pytest.raises(ValidationError, match="retention.max_backups"):
            parse_config_string('[retention]\nmax_backups = "thirty"\n')

    def test_bool_is_not_an_int(self):
        with pytest.raises(ValidationError, match="expected int, got bool"):
            parse_config_string("[server]\nport = true\n")

    def test_zero_max_backups_rejected(self):
        with pytest.raises(ValidationError, match="at least 1"):
            parse_config_string("[retention]\nmax_backups = 0\n")

    def test_data_file_must_be_plain_name(self):
        with pytest.raises(ValidationError, match="plain file name"):
            parse_config_string('[storage]\ndata_file = "../elsewhere.json"\n')

    def test_section_must_be_table(self):
        with pytest.raises(ValidationError, match="Section 'storage'"):
            parse_config_string("storage = 3\n")

    def test_cors_origins_must_be_strings(self):
        with pytest.raises(ValidationError, match=r"cors_origins\[1\]"):
            parse_config_string('[server]\ncors_origins = ["http://a", 2]\n')


class TestParseConfigFile:
    """Loading from disk anchors relative paths at the config folder."""

    def test_missing_file_raises(self, tmp_path: Path):
        with pytest.raises(ConfigurationError, match="not found"):
            parse_config(tmp_path / "wikiportable.toml")

    def test_missing_file_ok_gives_anchored_defaults(self, tmp_path: Path):
        config = parse_config(tmp_path / "wikiportable.toml", missing_ok=True)

        assert config.storage.data_path == tmp_path / "data" / "wiki_data.json"
        assert config.storage.backup_dir == tmp_path / "backups"
        assert config.logging.log_file == tmp_path / "logs" / "wikiportable.log"

    def test_relative_paths_anchored(self, tmp_path: Path):
        config_file = tmp_path / "wikiportable.toml"
        config_file.write_text('[storage]\ndata_dir = "store"\nbackup_dir = "old"\n')

        config = parse_config(config_file)

        assert config.storage.data_dir == tmp_path / "store"
        assert config.storage.backup_dir == tmp_path / "old"

    def test_absolute_paths_untouched(self, tmp_path: Path):
        elsewhere = tmp_path / "elsewhere"
        config_file = tmp_path / "conf" / "wikiportable.toml"
        config_file.parent.mkdir()
        config_file.write_text(f'[storage]\nbackup_dir = "{elsewhere}"\n')

        config = parse_config(config_file)

        assert config.storage.backup_dir == elsewhere
        assert config.storage.data_dir == config_file.parent / "data"

import pytest

from zminit.config import ContainerSettings, LogFormat, LogLevel, load_settings
from zminit.exceptions import ConfigInvalidError


class TestLoadSettings:
    def test_empty_environment_uses_defaults(self) -> None:
        settings = load_settings({})

        assert settings == ContainerSettings()
        assert settings.mysql_host == "db"
        assert settings.mysql_port == 3306
        assert settings.php_max_children == 120
        assert settings.fastcgi_buffers == "64 4K"
        assert settings.timezone == "America/Chicago"
        assert settings.wait_timeout == 0.0
        assert settings.log_level == LogLevel.INFO
        assert settings.log_format == LogFormat.TEXT

    def test_reads_environment_names(self) -> None:
        settings = load_settings(
            {
                "MYSQL_HOST": "mariadb",
                "MYSQL_PORT": "3307",
                "ZM_DB_PASS": "s3cret",
                "FCGIWRAP_PROCESSES": "4",
                "USE_SECURE_RANDOM_ORG": "0",
                "TZ": "Europe/Berlin",
            }
        )

        assert settings.mysql_host == "mariadb"
        assert settings.mysql_port == 3307
        assert settings.db_password == "s3cret"
        assert settings.fcgiwrap_processes == 4
        assert settings.use_secure_random_org is False
        assert settings.timezone == "Europe/Berlin"

    def test_unknown_keys_are_ignored(self) -> None:
        settings = load_settings({"HOME": "/root", "PATH": "/usr/bin"})

        assert settings == ContainerSettings()

    def test_empty_values_fall_back_to_defaults(self) -> None:
        settings = load_settings({"MYSQL_PORT": "", "PHP_MEMORY_LIMIT": "   "})

        assert settings.mysql_port == 3306
        assert settings.php_memory_limit == "2048M"

    def test_reads_process_environment_by_default(
        self, clean_env: pytest.MonkeyPatch
    ) -> None:
        clean_env.setenv("MYSQL_HOST", "database.internal")

        assert load_settings().mysql_host == "database.internal"

    def test_settings_are_frozen(self) -> None:
        settings = load_settings({})

        with pytest.raises(ValueError, match="frozen"):
            settings.mysql_port = 1  # pyright: ignore[reportAttributeAccessIssue]


class TestInvalidSettings:
    @pytest.mark.parametrize(
        ("key", "value"),
        [
            ("MYSQL_PORT", "70000"),
            ("MYSQL_PORT", "three"),
            ("MYSQL_HOST", "-bad host"),
            ("PHP_MAX_CHILDREN", "0"),
            ("PHP_MEMORY_LIMIT", "lots"),
            ("FASTCGI_BUFFERS_CONFIGURATION_STRING", "64"),
            ("PUID", "-1"),
            ("MAX_LOG_NUMBER", "0"),
            ("WAIT_FOR_SERVICES_INTERVAL", "0"),
            ("LOG_LEVEL", "chatty"),
        ],
    )
    def test_error_names_the_key(self, key: str, value: str) -> None:
        with pytest.raises(ConfigInvalidError) as exc_info:
            _ = load_settings({key: value})

        assert exc_info.value.key == key
        assert exc_info.value.value == value
        assert key in str(exc_info.value)

    def test_unknown_timezone(self) -> None:
        with pytest.raises(ConfigInvalidError) as exc_info:
            _ = load_settings({"TZ": "Mars/Olympus_Mons"})

        assert exc_info.value.key == "TZ"

    def test_spare_servers_above_start_servers(self) -> None:
        with pytest.raises(ConfigInvalidError) as exc_info:
            _ = load_settings({"PHP_MIN_SPARE_SERVERS": "20"})

        assert exc_info.value.key == "PHP_START_SERVERS"

    def test_start_servers_above_max_spare(self) -> None:
        with pytest.raises(ConfigInvalidError) as exc_info:
            _ = load_settings({"PHP_START_SERVERS": "50"})

        assert exc_info.value.key == "PHP_START_SERVERS"

    def test_max_spare_above_max_children(self) -> None:
        with pytest.raises(ConfigInvalidError) as exc_info:
            _ = load_settings({"PHP_MAX_CHILDREN": "10"})

        assert exc_info.value.key == "PHP_MAX_SPARE_SERVERS"

    def test_backoff_base_above_max(self) -> None:
        with pytest.raises(ConfigInvalidError) as exc_info:
            _ = load_settings({"RESTART_BACKOFF_BASE": "120"})

        assert exc_info.value.key == "RESTART_BACKOFF_BASE"

    @pytest.mark.parametrize("value", ["0", "1"])
    def test_bootstrap_failures_cannot_be_ignored(self, value: str) -> None:
        with pytest.raises(ConfigInvalidError) as exc_info:
            _ = load_settings({"S6_BEHAVIOUR_IF_STAGE2_FAILS": value})

        assert exc_info.value.key == "S6_BEHAVIOUR_IF_STAGE2_FAILS"

    def test_image_bootstrap_failure_behaviour_is_accepted(self) -> None:
        settings = load_settings({"S6_BEHAVIOUR_IF_STAGE2_FAILS": "2"})

        assert settings.bootstrap_failure_behaviour == 2


class TestEnvRoundTrip:
    def test_env_keys_cover_every_field(self) -> None:
        keys = ContainerSettings.env_keys()

        assert "MYSQL_HOST" in keys
        assert "FASTCGI_BUFFERS_CONFIGURATION_STRING" in keys
        assert len(keys) == len(ContainerSettings.model_fields)

    def test_to_env_reloads_to_equal_settings(self) -> None:
        settings = load_settings({"PHP_MAX_CHILDREN": "60", "USE_SECURE_RANDOM_ORG": "false"})

        rendered = settings.to_env()

        assert rendered["USE_SECURE_RANDOM_ORG"] == "0"
        assert load_settings(rendered) == settings

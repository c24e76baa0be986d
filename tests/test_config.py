"""Tests for redis_exporter.config module."""

import logging
from datetime import timedelta

import pytest

from redis_exporter.config import (
    INT64_MAX,
    INT64_MIN,
    env_value,
    parse_bool,
    parse_duration,
    parse_int,
    parse_listen_address,
    resolve,
)
from redis_exporter.errors import ConfigParseError


class TestParseBool:
    """Test cases for strict boolean parsing."""

    @pytest.mark.parametrize("value", ["1", "t", "T", "TRUE", "true", "True"])
    def test_true_spellings(self, value):
        """Test that every accepted true spelling parses to True."""
        assert parse_bool(value) is True

    @pytest.mark.parametrize("value", ["0", "f", "F", "FALSE", "false", "False"])
    def test_false_spellings(self, value):
        """Test that every accepted false spelling parses to False."""
        assert parse_bool(value) is False

    @pytest.mark.parametrize("value", ["yes", "no", "", "tRuE", " true", "2"])
    def test_rejects_other_values(self, value):
        """Test that anything outside the accepted set is rejected."""
        with pytest.raises(ValueError):
            parse_bool(value)


class TestParseInt:
    """Test cases for strict int64 parsing."""

    def test_parse_signed_values(self):
        """Test parsing positive, negative and explicitly signed integers."""
        assert parse_int("1000") == 1000
        assert parse_int("-5") == -5
        assert parse_int("+7") == 7

    def test_parse_int64_bounds(self):
        """Test that the int64 bounds are accepted and exceeding them is not."""
        assert parse_int(str(INT64_MAX)) == INT64_MAX
        assert parse_int(str(INT64_MIN)) == INT64_MIN
        with pytest.raises(ValueError):
            parse_int(str(INT64_MAX + 1))
        with pytest.raises(ValueError):
            parse_int(str(INT64_MIN - 1))

    @pytest.mark.parametrize("value", ["", "1.5", "0x10", "1_000", " 10", "ten"])
    def test_rejects_malformed(self, value):
        """Test that non-decimal input is rejected."""
        with pytest.raises(ValueError):
            parse_int(value)


class TestParseDuration:
    """Test cases for the duration grammar."""

    @pytest.mark.parametrize(
        "text,expected",
        [
            ("15s", timedelta(seconds=15)),
            ("0", timedelta(0)),
            ("250ms", timedelta(milliseconds=250)),
            ("1m30s", timedelta(seconds=90)),
            ("1.5h", timedelta(minutes=90)),
            ("2h45m", timedelta(hours=2, minutes=45)),
            ("10us", timedelta(microseconds=10)),
            ("10Âµs", timedelta(microseconds=10)),
            ("-3s", timedelta(seconds=-3)),
            ("+3s", timedelta(seconds=3)),
            (".5s", timedelta(milliseconds=500)),
        ],
    )
    def test_valid_durations(self, text, expected):
        """Test parsing of valid duration strings."""
        assert parse_duration(text) == expected

    @pytest.mark.parametrize("text", ["", "15", "s", "15 s", "15sec", "1d", "-", "abc"])
    def test_invalid_durations(self, text):
        """Test that malformed durations raise ConfigParseError."""
        with pytest.raises(ConfigParseError):
            parse_duration(text)

    @pytest.mark.parametrize(
        "text", ["9999999999999999999h", "-9999999999999999999h", "3000000h"]
    )
    def test_out_of_range_durations(self, text):
        """Test that durations beyond the 64-bit nanosecond range are rejected."""
        with pytest.raises(ConfigParseError):
            parse_duration(text)

    def test_largest_duration(self):
        """Test that a duration just inside the range is accepted."""
        assert parse_duration("2562047h") == timedelta(hours=2562047)


class TestParseListenAddress:
    """Test cases for listen address parsing."""

    def test_port_only(self):
        """Test that ':port' binds all interfaces."""
        assert parse_listen_address(":9121") == ("", 9121)

    def test_host_and_port(self):
        """Test a host and port pair."""
        assert parse_listen_address("127.0.0.1:0") == ("127.0.0.1", 0)

    def test_bracketed_ipv6(self):
        """Test that bracketed IPv6 hosts are unwrapped."""
        assert parse_listen_address("[::1]:9121") == ("::1", 9121)

    @pytest.mark.parametrize(
        "address", ["9121", "host:", "host:port", ":70000", "::1:9121", ":\u0661\u0662"]
    )
    def test_invalid_addresses(self, address):
        """Test rejection of malformed listen addresses."""
        with pytest.raises(ConfigParseError):
            parse_listen_address(address)


class TestResolve:
    """Test cases for argument > environment > default precedence."""

    @pytest.mark.parametrize(
        "parse,arg,env,default",
        [
            (None, "from-arg", "from-env", "default"),
            (parse_bool, False, "true", True),
            (parse_int, 5, "10", 1000),
        ],
    )
    def test_argument_wins_over_environment(self, monkeypatch, parse, arg, env, default):
        """Test that an explicit argument beats the environment for every type."""
        monkeypatch.setenv("REDIS_EXPORTER_TEST_OPTION", env)
        assert resolve(arg, "REDIS_EXPORTER_TEST_OPTION", default, parse) == arg

    @pytest.mark.parametrize(
        "parse,env,expected,default",
        [
            (None, "from-env", "from-env", "default"),
            (parse_bool, "false", False, True),
            (parse_int, "10", 10, 1000),
        ],
    )
    def test_environment_wins_over_default(
        self, monkeypatch, parse, env, expected, default
    ):
        """Test that the environment beats the default for every type."""
        monkeypatch.setenv("REDIS_EXPORTER_TEST_OPTION", env)
        assert resolve(None, "REDIS_EXPORTER_TEST_OPTION", default, parse) == expected

    @pytest.mark.parametrize(
        "parse,default", [(None, "default"), (parse_bool, True), (parse_int, 1000)]
    )
    def test_default_when_nothing_set(self, monkeypatch, parse, default):
        """Test that the default is used when neither argument nor env is set."""
        monkeypatch.delenv("REDIS_EXPORTER_TEST_OPTION", raising=False)
        assert resolve(None, "REDIS_EXPORTER_TEST_OPTION", default, parse) == default

    def test_explicit_false_argument_is_not_treated_as_missing(self, monkeypatch):
        """Test that a falsy explicit argument still wins."""
        monkeypatch.setenv("REDIS_EXPORTER_TEST_OPTION", "true")
        assert resolve(False, "REDIS_EXPORTER_TEST_OPTION", True, parse_bool) is False
        assert resolve("", "REDIS_EXPORTER_TEST_OPTION", "default") == ""

    def test_empty_environment_string_is_used(self, monkeypatch):
        """Test that a set-but-empty string variable overrides the default."""
        monkeypatch.setenv("REDIS_EXPORTER_TEST_OPTION", "")
        assert resolve(None, "REDIS_EXPORTER_TEST_OPTION", "default") == ""


class TestEnvValueLeniency:
    """Test cases for the silent fallback on unparsable environment values."""

    def test_malformed_batch_size_falls_back_to_default(self, monkeypatch, caplog):
        """Test that a malformed int falls back to the default with a warning."""
        monkeypatch.setenv("REDIS_EXPORTER_CHECK_KEYS_BATCH_SIZE", "lots")

        with caplog.at_level(logging.WARNING, logger="redis_exporter.config"):
            value = env_value("REDIS_EXPORTER_CHECK_KEYS_BATCH_SIZE", 1000, parse_int)

        assert value == 1000
        assert "REDIS_EXPORTER_CHECK_KEYS_BATCH_SIZE" in caplog.text
        assert "'lots'" in caplog.text

    def test_malformed_bool_falls_back_to_default(self, monkeypatch):
        """Test that a malformed bool never raises."""
        monkeypatch.setenv("REDIS_EXPORTER_DEBUG", "yes please")
        assert resolve(None, "REDIS_EXPORTER_DEBUG", False, parse_bool) is False

    def test_malformed_env_ignored_when_argument_given(self, monkeypatch):
        """Test that a malformed env value does not matter when an argument is given."""
        monkeypatch.setenv("REDIS_EXPORTER_MAX_DISTINCT_KEY_GROUPS", "x")
        assert resolve(7, "REDIS_EXPORTER_MAX_DISTINCT_KEY_GROUPS", 100, parse_int) == 7


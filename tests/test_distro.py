import subprocess

import pytest

from linux_bash_mcp.distro import (
    DistributionDetector,
    listing_text,
    parse_environment_listing,
    pick_default,
)
from linux_bash_mcp.errors import NoEnvironmentsFound

from conftest import LISTING_BYTES, LISTING_TEXT, FakeRunner


def test_parse_verbose_listing_from_utf16_bytes():
    environments = parse_environment_listing(LISTING_BYTES)

    assert [env.name for env in environments] == ["Ubuntu-22.04", "Debian", "kali-linux"]
    ubuntu, debian, kali = environments
    assert ubuntu.is_default and ubuntu.running and ubuntu.api_version == 2
    assert not debian.is_default and not debian.running
    assert kali.api_version == 1
    assert kali.state == "Stopped"


def test_parse_strips_embedded_control_bytes_and_extra_whitespace():
    noisy = "\x1b[0m  NAME   STATE   VERSION\n\x00*\x00 \x00Alpine\t\t Running \x07  2  \n\n   \n"
    environments = parse_environment_listing(noisy)

    assert len(environments) == 1
    assert environments[0].name == "Alpine"
    assert environments[0].is_default
    assert environments[0].running


def test_parse_short_listing_with_default_suffix():
    text = "Windows Subsystem for Linux Distributions:\r\nDebian\r\nUbuntu (Default)\r\n"
    environments = parse_environment_listing(text)

    assert [env.name for env in environments] == ["Debian", "Ubuntu"]
    assert environments[1].is_default
    assert environments[0].api_version == 0


def test_parse_skips_separator_and_informational_lines():
    text = "The following is a list of installed distributions:\n-----------\n"
    assert parse_environment_listing(text) == []


def test_pick_default_prefers_marked_entry():
    environments = parse_environment_listing(LISTING_TEXT.replace("* Ubuntu", "  Ubuntu").replace("  Debian", "* Debian"))
    assert pick_default(environments) == "Debian"


def test_pick_default_falls_back_to_first_entry():
    environments = parse_environment_listing("Debian Stopped 2\nUbuntu Running 2\n")
    assert pick_default(environments) == "Debian"


def test_pick_default_with_no_entries_raises():
    with pytest.raises(NoEnvironmentsFound):
        pick_default([])


def test_listing_text_is_printable():
    text = listing_text(LISTING_BYTES)
    assert "\x00" not in text
    assert text.splitlines()[1].startswith("* Ubuntu-22.04")


class TestDetector:
    def test_detect_default_uses_verbose_listing(self, fake_runner):
        detector = DistributionDetector(runner=fake_runner)

        assert detector.detect_default() == "Ubuntu-22.04"
        assert fake_runner.calls == [["wsl", "-l", "-v"]]

    def test_custom_bridge_executable(self):
        runner = FakeRunner()
        DistributionDetector(runner=runner, bridge_executable="wsl.exe").list_environments()
        assert runner.calls[0][0] == "wsl.exe"

    def test_empty_listing_raises(self):
        detector = DistributionDetector(runner=FakeRunner(output=b""))
        with pytest.raises(NoEnvironmentsFound):
            detector.detect_default()

    @pytest.mark.parametrize(
        "error",
        [
            FileNotFoundError("wsl not found"),
            subprocess.CalledProcessError(1, ["wsl", "-l", "-v"]),
            subprocess.TimeoutExpired(["wsl", "-l", "-v"], 15),
        ],
    )
    def test_listing_failure_raises_no_environments(self, error):
        detector = DistributionDetector(runner=FakeRunner(error=error))
        with pytest.raises(NoEnvironmentsFound):
            detector.list_environments()

"""Smoke tests for the rtc-rendezvous package.

These tests verify that the installed package is structurally sound: all
subpackages importable and the CLI entry point reachable. They guard against
packaging bugs where a subpackage is missing from the published wheel.
"""

from click.testing import CliRunner

from rtc_rendezvous.cli import cli


# ── Subpackage imports ────────────────────────────────────────────────────────


class TestSubpackageImports:
    """Each rtc_rendezvous module must be importable without error."""

    def test_import_client(self):
        """rtc_rendezvous.client must be importable."""
        import rtc_rendezvous.client  # noqa: F401

    def test_import_client_class(self):
        """RendezvousClient must be importable from the package root."""
        from rtc_rendezvous import RendezvousClient
        from rtc_rendezvous.client.client_class import RendezvousClient as cls

        assert RendezvousClient is cls

    def test_import_engine(self):
        """The aiortc adapter must import (aiortc installed)."""
        from rtc_rendezvous.client.engine import PeerSession  # noqa: F401

    def test_version(self):
        import rtc_rendezvous

        assert rtc_rendezvous.__version__


# ── CLI entry point ───────────────────────────────────────────────────────────


class TestCLIEntryPoint:
    """The CLI entry point must be reachable and respond to --help."""

    def test_main_help(self):
        """rtc-rendezvous --help must exit 0 and list core commands."""
        runner = CliRunner()
        result = runner.invoke(cli, ["--help"])
        assert result.exit_code == 0
        assert "connect" in result.output
        assert "config" in result.output

    def test_connect_help(self):
        """rtc-rendezvous connect --help must exit 0."""
        runner = CliRunner()
        result = runner.invoke(cli, ["connect", "--help"])
        assert result.exit_code == 0
        assert "--api-url" in result.output

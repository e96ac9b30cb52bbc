"""
Tests for command-line parsing and exit codes.
"""

from ipaddress import IPv4Address

import pytest

from netdrop import cli
from netdrop.errors import NoInterfaceFound


class TestParser:
    """Test argument parsing."""

    def test_send_with_peers(self):
        args = cli.build_parser().parse_args(
            ["send", "photo.jpg", "--peer", "192.168.1.5", "--peer", "192.168.1.6"]
        )

        assert args.command == "send"
        assert args.payload == "photo.jpg"
        assert args.peer == [IPv4Address("192.168.1.5"), IPv4Address("192.168.1.6")]

    def test_defaults(self):
        args = cli.build_parser().parse_args(["listen"])

        assert args.port == 27001
        assert args.buffer_size == 65536

    def test_bad_peer_address(self):
        with pytest.raises(SystemExit):
            cli.build_parser().parse_args(["text", "hi", "--peer", "nope"])


class TestMain:
    """Test exit codes of the entry point."""

    def test_missing_file_exits_1(self, tmp_path):
        assert cli.main(["send", str(tmp_path / "missing.bin"), "--peer", "127.0.0.1"]) == 1

    def test_errors_are_logged_under_module_logger(self, tmp_path, caplog):
        cli.main(["send", str(tmp_path / "missing.bin"), "--peer", "127.0.0.1"])

        errors = [r for r in caplog.records if r.levelname == "ERROR"]
        assert errors
        assert errors[-1].name == "netdrop.cli"

    def test_no_interface_exits_1(self, monkeypatch):
        async def no_subnet(self):
            raise NoInterfaceFound("no valid network interface found")

        monkeypatch.setattr(cli.DiscoveryService, "discover", no_subnet)

        assert cli.main(["scan"]) == 1

    def test_scan_prints_peers(self, monkeypatch, capsys):
        async def two_peers(self):
            return frozenset({IPv4Address("10.0.0.9"), IPv4Address("10.0.0.3")})

        monkeypatch.setattr(cli.DiscoveryService, "discover", two_peers)

        assert cli.main(["scan"]) == 0
        assert capsys.readouterr().out.splitlines() == ["10.0.0.3", "10.0.0.9"]

    def test_send_with_no_peers(self, monkeypatch, capsys, tmp_path):
        async def nobody(self):
            return frozenset()

        monkeypatch.setattr(cli.DiscoveryService, "discover", nobody)
        path = tmp_path / "hi"
        path.write_bytes(b"abc")

        assert cli.main(["send", str(path)]) == 0
        assert "No active devices found" in capsys.readouterr().out

"""
Unit tests for CLI module.
"""

import os
import unittest
from unittest.mock import MagicMock, patch

from cli import build_parser, main
from errors import ServerInstallCanceledError, ServerInstallFailedError, TransportError
from models import ManagementEndpoint, Zone


def failing_progress(error):
    yield 0.12
    raise error


class TestCLI(unittest.TestCase):
    """Test CLI argument parsing and entry point."""

    def test_parser_create(self):
        """Test create subcommand arguments."""
        parser = build_parser()

        args = parser.parse_args(
            [
                "create",
                "--project",
                "test-project",
                "--name",
                "My Server",
                "--zone",
                "us-central1-a",
                "--metrics",
                "--install-timeout",
                "900",
                "--verbose",
            ]
        )

        self.assertEqual(args.command, "create")
        self.assertEqual(args.project, "test-project")
        self.assertEqual(args.name, "My Server")
        self.assertEqual(args.zone, "us-central1-a")
        self.assertTrue(args.metrics)
        self.assertEqual(args.install_timeout, 900.0)
        self.assertEqual(args.poll_interval, 5.0)
        self.assertTrue(args.verbose)

    def test_parser_requires_command(self):
        parser = build_parser()

        with self.assertRaises(SystemExit):
            parser.parse_args(["--project", "test-project"])

    def test_parser_requires_project(self):
        parser = build_parser()

        with self.assertRaises(SystemExit):
            parser.parse_args(["list"])

    def test_parser_delete_requires_instance(self):
        parser = build_parser()

        with self.assertRaises(SystemExit):
            parser.parse_args(["delete", "--project", "test-project"])

    @patch("cli.build_account")
    @patch("cli.setup_logging")
    def test_main_create_success(self, mock_setup_logging, mock_build_account):
        """Test create drains progress and exits 0 when the install completes."""
        server = MagicMock()
        server.get_id.return_value = "default:123"
        server.monitor_install_progress.return_value = iter([0.01, 0.4, 1.0])
        server.get_management_endpoint.return_value = ManagementEndpoint(
            api_url="https://203.0.113.7:8080/abc", cert_sha256="AB:CD"
        )
        account = MagicMock()
        account.create_server.return_value = server
        mock_build_account.return_value = account

        result = main(
            ["create", "--project", "p", "--name", "srv", "--zone", "us-central1-a"]
        )

        self.assertEqual(result, 0)
        account.create_server.assert_called_once_with("p", "srv", Zone("us-central1-a"), False)
        mock_setup_logging.assert_called_once_with(verbose=False)

    @patch("cli.build_account")
    @patch("cli.setup_logging")
    def test_main_create_failed(self, mock_setup_logging, mock_build_account):
        server = MagicMock()
        server.monitor_install_progress.return_value = failing_progress(
            ServerInstallFailedError("failed")
        )
        mock_build_account.return_value.create_server.return_value = server

        result = main(["create", "--project", "p", "--name", "srv", "--zone", "us-central1-a"])

        self.assertEqual(result, 1)

    @patch("cli.build_account")
    @patch("cli.setup_logging")
    def test_main_create_canceled(self, mock_setup_logging, mock_build_account):
        server = MagicMock()
        server.monitor_install_progress.return_value = failing_progress(
            ServerInstallCanceledError("canceled")
        )
        mock_build_account.return_value.create_server.return_value = server

        result = main(["create", "--project", "p", "--name", "srv", "--zone", "us-central1-a"])

        self.assertEqual(result, 1)

    @patch("cli.build_account")
    @patch("cli.setup_logging")
    def test_main_create_interrupted_deletes(self, mock_setup_logging, mock_build_account):
        """Test Ctrl-C during the install deletes the half-built server."""
        server = MagicMock()
        server.monitor_install_progress.return_value = failing_progress(KeyboardInterrupt())
        mock_build_account.return_value.create_server.return_value = server

        result = main(["create", "--project", "p", "--name", "srv", "--zone", "us-central1-a"])

        self.assertEqual(result, 130)
        server.get_host.return_value.delete.assert_called_once_with()

    @patch("cli.build_account")
    @patch("cli.setup_logging")
    def test_main_delete(self, mock_setup_logging, mock_build_account):
        other = MagicMock()
        other.get_host.return_value.get_host_id.return_value = "111"
        target = MagicMock()
        target.get_host.return_value.get_host_id.return_value = "222"
        mock_build_account.return_value.list_servers.return_value = [other, target]

        result = main(["delete", "--project", "p", "--instance", "222"])

        self.assertEqual(result, 0)
        target.get_host.return_value.delete.assert_called_once_with()
        other.get_host.return_value.delete.assert_not_called()

    @patch("cli.build_account")
    @patch("cli.setup_logging")
    def test_main_delete_unknown_instance(self, mock_setup_logging, mock_build_account):
        mock_build_account.return_value.list_servers.return_value = []

        result = main(["delete", "--project", "p", "--instance", "222"])

        self.assertEqual(result, 1)

    @patch("cli.build_account")
    @patch("cli.setup_logging")
    def test_main_api_error(self, mock_setup_logging, mock_build_account):
        """Test API errors become exit code 1."""
        mock_build_account.return_value.list_locations.side_effect = TransportError(
            403, "Compute Engine API has not been used in project"
        )

        result = main(["locations", "--project", "p"])

        self.assertEqual(result, 1)

    @patch.dict(os.environ, {}, clear=True)
    @patch("cli.AccessTokenProvider")
    @patch("cli.setup_logging")
    def test_main_list_builds_account(self, mock_setup_logging, mock_provider_class):
        with patch("cli.CloudAccount") as mock_account_class:
            mock_account_class.return_value.list_servers.return_value = []

            result = main(["list", "--project", "p", "--refresh-token", "rt"])

        self.assertEqual(result, 0)
        mock_provider_class.assert_called_once_with(
            refresh_token="rt", client_id=None, client_secret=None
        )
        args, kwargs = mock_account_class.call_args
        self.assertEqual(args[0], "default")
        self.assertEqual(kwargs["poll_interval"], 5.0)


if __name__ == "__main__":
    unittest.main()

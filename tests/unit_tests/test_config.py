"""
Unit tests for configuration.
"""

import os
import unittest
from argparse import Namespace
from unittest.mock import patch

from config import ProvisionerConfig


def make_args(**overrides):
    values = dict(
        project="test-project",
        account_id="default",
        refresh_token=None,
        client_id=None,
        client_secret=None,
        poll_interval=5.0,
        install_timeout=None,
        request_timeout=60,
        container_image="",
        metrics_url="",
        verbose=False,
    )
    values.update(overrides)
    return Namespace(**values)


class TestProvisionerConfig(unittest.TestCase):
    """Test ProvisionerConfig data model."""

    def test_config_defaults(self):
        """Test default configuration values."""
        config = ProvisionerConfig(project_id="my-project")
        self.assertEqual(config.project_id, "my-project")
        self.assertEqual(config.account_id, "default")
        self.assertIsNone(config.refresh_token)
        self.assertEqual(config.poll_interval, 5.0)
        self.assertIsNone(config.install_timeout)
        self.assertEqual(config.request_timeout, 60)
        self.assertFalse(config.metrics_enabled)
        self.assertEqual(config.install_settings.container_image, "")
        self.assertFalse(config.verbose)

    @patch.dict(os.environ, {}, clear=True)
    def test_config_from_args(self):
        """Test creating config from command-line arguments."""
        args = make_args(
            refresh_token="rt",
            client_id="cid",
            client_secret="secret",
            poll_interval=2.5,
            install_timeout=600.0,
            container_image="quay.io/outline/shadowbox:daily",
            metrics_url="https://metrics.example.com",
            metrics=True,
            verbose=True,
        )
        config = ProvisionerConfig.from_args(args)

        self.assertEqual(config.project_id, "test-project")
        self.assertEqual(config.refresh_token, "rt")
        self.assertEqual(config.client_id, "cid")
        self.assertEqual(config.client_secret, "secret")
        self.assertEqual(config.poll_interval, 2.5)
        self.assertEqual(config.install_timeout, 600.0)
        self.assertTrue(config.metrics_enabled)
        self.assertEqual(
            config.install_settings.container_image, "quay.io/outline/shadowbox:daily"
        )
        self.assertEqual(config.install_settings.metrics_url, "https://metrics.example.com")
        self.assertTrue(config.verbose)

    @patch.dict(
        os.environ,
        {
            "PROVISIONER_REFRESH_TOKEN": "env-rt",
            "PROVISIONER_CLIENT_ID": "env-cid",
            "PROVISIONER_CLIENT_SECRET": "env-secret",
        },
        clear=True,
    )
    def test_config_credentials_from_environment(self):
        """Test credentials fall back to the environment."""
        config = ProvisionerConfig.from_args(make_args(client_id="cli-cid"))

        self.assertEqual(config.refresh_token, "env-rt")
        self.assertEqual(config.client_id, "cli-cid")
        self.assertEqual(config.client_secret, "env-secret")
        # Subcommands without --metrics never enable it.
        self.assertFalse(config.metrics_enabled)


if __name__ == "__main__":
    unittest.main()

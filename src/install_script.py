"""
Startup script run on new instances to install the managed server.

The script reports progress through guest attributes in the ``outline/``
namespace, which the provisioner polls:

- ``install-started``: the script began running
- ``certSha256``: base64 of the management certificate's SHA-256 fingerprint
- ``apiUrl``: management API URL (published last)
- ``install-error``: the install failed
"""

import base64
import shlex
from dataclasses import dataclass
from typing import Dict, Optional

INSTALL_SCRIPT_BODY = r"""
readonly GUEST_ATTRIBUTES_URL="http://metadata.google.internal/computeMetadata/v1/instance/guest-attributes/outline"

function cloud::set_guest_attribute() {
  curl --silent --show-error --fail -X PUT --data "$2" \
    -H "Metadata-Flavor: Google" "${GUEST_ATTRIBUTES_URL}/$1"
}

function cloud::on_error() {
  cloud::set_guest_attribute "install-error" "true"
}
trap cloud::on_error ERR

cloud::set_guest_attribute "install-started" "true"

export SHADOWBOX_DIR="${SHADOWBOX_DIR:-/opt/outline}"
mkdir -p "${SHADOWBOX_DIR}"

curl --silent --show-error --fail https://get.docker.com | sh
curl --silent --show-error --fail \
  https://raw.githubusercontent.com/Jigsaw-Code/outline-apps/master/server_manager/install_scripts/install_server.sh \
  | bash -s -- --hostname "$(curl --silent -H 'Metadata-Flavor: Google' \
      http://metadata.google.internal/computeMetadata/v1/instance/network-interfaces/0/access-configs/0/external-ip)"

readonly ACCESS_CONFIG="${SHADOWBOX_DIR}/access.txt"
cloud::set_guest_attribute "certSha256" \
  "$(grep 'certSha256:' "${ACCESS_CONFIG}" | sed 's/certSha256://' | tr -d '\n' | base64 -w 0)"
cloud::set_guest_attribute "apiUrl" "$(grep 'apiUrl:' "${ACCESS_CONFIG}" | sed 's/apiUrl://')"
"""


@dataclass
class InstallSettings:
    """Settings baked into the install script of every new server."""

    container_image: str = ""
    metrics_url: str = ""
    sentry_api_url: Optional[str] = None
    watchtower_refresh_seconds: Optional[int] = None


def get_shell_export_commands(
    settings: InstallSettings, server_name: str, metrics_enabled: bool
) -> str:
    """
    Build ``export`` lines for the install settings.

    Empty settings are left out. The server name is always quoted.
    """
    variables: Dict[str, Optional[str]] = {
        "SB_IMAGE": settings.container_image,
        "WATCHTOWER_REFRESH_SECONDS": (
            str(settings.watchtower_refresh_seconds)
            if settings.watchtower_refresh_seconds
            else None
        ),
        "SENTRY_API_URL": settings.sentry_api_url,
        "SB_METRICS_URL": settings.metrics_url,
    }
    lines = [
        f"export {name}={shlex.quote(value)}"
        for name, value in variables.items()
        if value
    ]
    lines.append(f"export SB_DEFAULT_SERVER_NAME={shlex.quote(server_name)}")
    lines.append(f"export SB_METRICS_ENABLED={'true' if metrics_enabled else 'false'}")
    return "\n".join(lines) + "\n"


def build_install_script(
    settings: InstallSettings,
    server_name: str,
    metrics_enabled: bool,
    body: str = INSTALL_SCRIPT_BODY,
) -> str:
    """Return the full startup script passed as instance ``user-data``."""
    return (
        "#!/bin/bash -eu\n"
        + get_shell_export_commands(settings, server_name, metrics_enabled)
        + body
    )


def embed_tarball(tarball: bytes, entrypoint: str = "./install_server.sh") -> str:
    """
    Build a script body that unpacks a gzip tarball and runs ``entrypoint``.

    Args:
        tarball: Contents of a .tar.gz archive
        entrypoint: Script inside the archive to run after extraction

    Returns:
        Script body suitable for ``build_install_script``
    """
    encoded = base64.b64encode(tarball).decode("ascii")
    return (
        "\n(base64 --decode | tar --extract --gzip ) <<EOM\n"
        f"{encoded}\n"
        "EOM\n"
        f"{entrypoint}\n"
    )

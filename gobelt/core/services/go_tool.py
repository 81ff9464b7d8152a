"""
Go toolchain commands — argv builders and output parsers.

Install commands are long-running and streamed by the runner; the
probes here (``version -m``, ``list -m -json``, ``version``) are short
read-only calls and run via ``subprocess.run``.

Probes never raise: a missing binary, a non-zero exit or unparseable
output all come back as ``None``.
"""

from __future__ import annotations

import json
import logging
import os
import re
import shutil
import subprocess

logger = logging.getLogger(__name__)

# "\tmod\tgithub.com/charmbracelet/freeze\tv0.1.6\th1:..."
_MOD_LINE = re.compile(r"^\s*mod\s+(\S+)\s+(v\S+)", re.MULTILINE)
_GO_VERSION = re.compile(r"go version (go\S+)")


def go_available(go_cmd: list[str]) -> bool:
    """Whether the first element of ``go_cmd`` resolves to an executable."""
    return bool(go_cmd) and shutil.which(go_cmd[0]) is not None


def install_command(go_cmd: list[str], source: str) -> list[str]:
    return [*go_cmd, "install", f"{source}@latest"]


def version_command(go_cmd: list[str], binary_path: str) -> list[str]:
    return [*go_cmd, "version", "-m", binary_path]


def latest_command(go_cmd: list[str], source: str) -> list[str]:
    return [*go_cmd, "list", "-m", "-json", f"{source}@latest"]


def parse_installed_version(output: str, module: str | None = None) -> str | None:
    """Extract the main-module version from ``go version -m`` output.

    Prefers the ``mod`` line for ``module`` when given; otherwise the
    first ``mod`` line wins.  ``(devel)`` builds have no version.
    """
    matches = _MOD_LINE.findall(output or "")
    if not matches:
        return None
    if module:
        for path, version in matches:
            if path == module:
                return version
    return matches[0][1]


def parse_latest_version(output: str) -> str | None:
    """Extract ``Version`` from ``go list -m -json`` output."""
    try:
        data = json.loads(output)
    except (TypeError, ValueError):
        return None
    if not isinstance(data, dict):
        return None
    version = data.get("Version")
    return version if isinstance(version, str) and version else None


def _probe(cmd: list[str], *, env: dict[str, str] | None = None) -> str | None:
    """Run a read-only command; stdout on success, None otherwise."""
    try:
        result = subprocess.run(
            cmd,
            capture_output=True,
            text=True,
            env=env,
        )
    except OSError as e:
        logger.debug("Probe failed to start %s: %s", cmd, e)
        return None

    if result.returncode != 0:
        logger.debug(
            "Probe %s exited %d: %s",
            " ".join(cmd), result.returncode, (result.stderr or "").strip()[:200],
        )
        return None
    return result.stdout


def query_installed_version(
    go_cmd: list[str],
    binary_path: str | None,
    module: str | None = None,
) -> str | None:
    """Version embedded in an installed binary's build info."""
    if not binary_path:
        return None
    output = _probe(version_command(go_cmd, binary_path))
    if output is None:
        return None
    return parse_installed_version(output, module)


def query_latest_version(go_cmd: list[str], source: str) -> str | None:
    """Latest version of ``source`` known to the module proxy."""
    env = os.environ.copy()
    env["GOFLAGS"] = ""
    output = _probe(latest_command(go_cmd, source), env=env)
    if output is None:
        return None
    return parse_latest_version(output)


def go_version(go_cmd: list[str]) -> str | None:
    """``go version`` string, e.g. ``go1.22.1``."""
    if not go_available(go_cmd):
        return None
    output = _probe([*go_cmd, "version"])
    if output is None:
        return None
    match = _GO_VERSION.search(output)
    return match.group(1) if match else output.strip() or None

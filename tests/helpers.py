"""
Test helpers — the fake go toolchain and small polling utilities.

The real ``go`` toolchain is never used.  ``FAKE_GO`` is a small Python
script that understands the four commands gobelt issues (``install``,
``version -m``, ``list -m -json``, ``version``).  It is run as
``[sys.executable, script]``, so the whole subprocess pipeline is
exercised for real.

Fake-go knobs (environment variables):
    FAKE_GOBIN       directory where ``install`` drops binaries
    FAKE_GO_DELAY    seconds each install sleeps (default 0)
    FAKE_GO_FAIL     comma-separated binary names whose install fails
    FAKE_GO_LATEST   version reported by ``list`` and written by ``install``
    FAKE_GO_OFFLINE  when set, ``list`` fails like a network error
    FAKE_GO_CHILD_PIDFILE  when set, ``install`` starts a long-lived child
                     process and writes its pid here
"""

from __future__ import annotations

import textwrap
import time
from pathlib import Path

TIMEOUT = 15

FAKE_GO = textwrap.dedent('''\
    import json
    import os
    import sys
    import time

    args = sys.argv[1:]


    def fail(msg):
        print(msg, file=sys.stderr)
        sys.exit(1)


    if args[:1] == ["install"]:
        target = args[1]
        module = target.partition("@")[0]
        name = module.rstrip("/").rsplit("/", 1)[-1]
        version = os.environ.get("FAKE_GO_LATEST", "v1.1.0")
        print(f"go: downloading {module} {version}", flush=True)
        pidfile = os.environ.get("FAKE_GO_CHILD_PIDFILE")
        if pidfile:
            import subprocess
            child = subprocess.Popen(
                [sys.executable, "-c", "import time; time.sleep(60)"],
                stdout=subprocess.DEVNULL,
            )
            with open(pidfile, "w") as fh:
                fh.write(str(child.pid))
        print("", flush=True)
        time.sleep(float(os.environ.get("FAKE_GO_DELAY", "0")))
        if name in os.environ.get("FAKE_GO_FAIL", "").split(","):
            fail(f"go: {target}: module {module}: not found")
        path = os.path.join(os.environ["FAKE_GOBIN"], name)
        with open(path, "w") as fh:
            fh.write(f"#!/bin/sh\\n# module={module}\\n# version={version}\\n")
        os.chmod(path, 0o755)
        sys.exit(0)

    if args[:2] == ["version", "-m"]:
        path = args[2]
        meta = {}
        with open(path) as fh:
            for line in fh:
                if line.startswith("# ") and "=" in line:
                    key, _, value = line[2:].strip().partition("=")
                    meta[key] = value
        if "module" not in meta:
            fail(f"{path}: could not read Go build info")
        print(f"{path}: go1.22.1")
        print(f"\\tpath\\t{meta['module']}")
        print(f"\\tmod\\t{meta['module']}\\t{meta['version']}\\th1:abc=")
        sys.exit(0)

    if args[:3] == ["list", "-m", "-json"]:
        if os.environ.get("FAKE_GO_OFFLINE"):
            fail("go: proxy.golang.org: dial tcp: lookup proxy.golang.org: no such host")
        module = args[3].partition("@")[0]
        version = os.environ.get("FAKE_GO_LATEST", "v1.1.0")
        print(json.dumps({"Path": module, "Version": version}, indent=1))
        sys.exit(0)

    if args == ["version"]:
        print("go version go1.22.1 linux/amd64")
        sys.exit(0)

    fail(f"fake go: unsupported command {args}")
''')


def module_for(name: str) -> str:
    return f"example.com/tools/{name}"


def make_installed(gobin: Path, name: str, version: str = "v1.0.0") -> Path:
    """Drop an executable that the fake ``go version -m`` can read."""
    path = gobin / name
    path.write_text(f"#!/bin/sh\n# module={module_for(name)}\n# version={version}\n")
    path.chmod(0o755)
    return path


def wait_until(predicate, timeout: float = TIMEOUT) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.02)
    return False

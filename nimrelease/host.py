"""
Host queries: OS name, CPU count, target triples and native paths.
"""

from __future__ import annotations

from collections.abc import Mapping
import logging
import os
import platform
import subprocess

from nimrelease.types import HostOS, HostPlatform, InvalidArgument

logger = logging.getLogger(__name__)


def detect_os(env: Mapping[str, str] | None = None) -> str:
    """Return the OS name in lower case (``windows``, ``darwin``, ``linux``, ...)."""
    if env is None:
        env = os.environ
    if env.get("OS") == "Windows_NT":
        return "windows"
    return platform.system().lower()


def _query_count(cmd: list[str]) -> str | None:
    try:
        result = subprocess.run(
            cmd,
            check=False,
            capture_output=True,
            text=True,
        )
    except OSError as e:
        logger.debug(f"CPU count query {cmd[0]} unavailable: {e}")
        return None
    if result.returncode != 0:
        return None
    return result.stdout


def cpu_count(
    env: Mapping[str, str] | None = None,
    os_name: str | None = None,
) -> int:
    """Return the number of logical CPUs, or 1 if it couldn't be found."""
    if env is None:
        env = os.environ
    if os_name is None:
        os_name = detect_os(env)

    raw: str | None = None
    if os_name == "windows":
        raw = env.get("NUMBER_OF_PROCESSORS")
    elif os_name == "darwin":
        raw = _query_count(["sysctl", "-n", "hw.ncpu"])
    elif os_name == "linux":
        raw = _query_count(["nproc"])

    try:
        ncpu = int((raw or "").strip())
    except ValueError:
        ncpu = 0
    if ncpu <= 0:
        return 1
    return ncpu


def arch_from_triple(triple: str) -> str:
    """Return the architecture part of a target triple (``x86_64-linux-gnu`` -> ``x86_64``)."""
    return triple.strip().split("-", 1)[0]


def native_path(path: str | None, os_name: str | None = None) -> str:
    """Translate a unix-style path to the host's native form."""
    if path is None:
        raise InvalidArgument("a path must be given")
    if not path:
        raise InvalidArgument("path must not be empty")
    if os_name is None:
        os_name = detect_os()
    if os_name == "windows":
        return path.replace("/", "\\")
    return path


def detect_host_platform(env: Mapping[str, str] | None = None) -> HostPlatform:
    """Describe the current host.

    The target CPU comes from the C compiler's triple at build time and the
    release name from the compiler's own metadata, so only the OS is kept.
    """
    return HostPlatform(os=HostOS.from_name(detect_os(env)))

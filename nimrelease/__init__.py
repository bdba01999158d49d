"""
Build and package Nim binary releases.

The host/pipeline helpers are usable on their own from CI steps; the packager
drives a full build of an extracted Nim source archive.
"""

from nimrelease.core import NIMRELEASE_VERSION
from nimrelease.host import arch_from_triple, cpu_count, detect_os, native_path
from nimrelease.pipeline import (
    begin_fold,
    end_fold,
    fold,
    propagate_env,
    propagate_path_prefix,
)
from nimrelease.types import BuildMetadata, HostOS, InvalidArgument, StepError

__version__ = NIMRELEASE_VERSION

__all__ = [
    "BuildMetadata",
    "HostOS",
    "InvalidArgument",
    "StepError",
    "arch_from_triple",
    "begin_fold",
    "cpu_count",
    "detect_os",
    "end_fold",
    "fold",
    "native_path",
    "propagate_env",
    "propagate_path_prefix",
]

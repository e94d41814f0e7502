"""
Native Module - Black Box Interface

Purpose: Build and run a Go operator as a managed child process
Interface: NativeLauncher, build_command(), build_environment()
Hidden: Signal handler installation, kill-and-reap logic
"""

from .launcher import ENTRY_POINT, NativeLauncher, build_command, build_environment

__all__ = ["ENTRY_POINT", "NativeLauncher", "build_command", "build_environment"]

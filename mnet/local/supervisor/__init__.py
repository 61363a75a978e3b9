"""
The Supervisor package.
Manages the lifecycle of the Headscale coordination server.

This package contains the ProcessSupervisor class and its helper modules,
which together handle version-gated startup, signalling, health checks and
bounded restarts of the Headscale process.
"""
from .status import SupervisorStatus
from .process_utils import ProcessHandle, spawn_process
from .supervisor import ProcessSupervisor

__all__ = ['ProcessSupervisor', 'ProcessHandle', 'SupervisorStatus', 'spawn_process']

"""Daemon module for cronpost.

Runs the scheduler as a long-lived process that follows the job store.
"""

from cronpost.daemon.keepalive import KeepAlivePinger
from cronpost.daemon.pid import DaemonAlreadyRunningError, PIDFile
from cronpost.daemon.service import CronpostDaemon, run_daemon
from cronpost.daemon.sync import JobSync, SyncResult

__all__ = [
    "CronpostDaemon",
    "DaemonAlreadyRunningError",
    "JobSync",
    "KeepAlivePinger",
    "PIDFile",
    "SyncResult",
    "run_daemon",
]

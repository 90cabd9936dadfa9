"""Server process supervision and background maintenance.

- :class:`~warden.supervisor.process.ProcessSupervisor` -- spawn, watch,
  restart and stop the server.
- :class:`~warden.supervisor.watcher.OutputWatcher` -- relay server output
  and detect lifecycle markers.
- :class:`~warden.supervisor.scheduler.BackgroundScheduler` -- credential
  health and log retention loops.
"""

from warden.supervisor.process import ProcessSupervisor
from warden.supervisor.scheduler import BackgroundScheduler
from warden.supervisor.watcher import MarkerScanner, OutputWatcher

__all__ = [
    "BackgroundScheduler",
    "MarkerScanner",
    "OutputWatcher",
    "ProcessSupervisor",
]

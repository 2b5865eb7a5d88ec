"""GUI integration boundary.

A real GUI (editor window, Qt, GTK) should:
- Show the catalog with checkboxes bound to InstallTask.selected
- Build an orchestrator with integration_wizard.main.build_orchestrator(...)
- Register the callable returned by attach_idle_driver() as its idle hook,
  removing the hook once it returns False
- Display InstallOrchestrator.status as the running status line
"""

from __future__ import annotations

from typing import Callable, Sequence

from integration_wizard.models import InstallTask
from integration_wizard.orchestrator import InstallOrchestrator


def attach_idle_driver(orchestrator: InstallOrchestrator, tasks: Sequence[InstallTask]) -> Callable[[], bool]:
    """Start the run and return the per-idle poll step.

    The returned callable follows idle-hook semantics: True keeps it
    scheduled, False asks the host to drop it.
    """

    orchestrator.start(tasks)
    return orchestrator.tick

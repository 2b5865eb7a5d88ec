from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class Paths:
    """Defaults, relative to the project root unless noted."""

    manifest: str = "Packages/manifest.json"
    cache_dir: str = "Library/IntegrationWizard/Cache"
    log_default: str = "Logs/integration-wizard.log"
    report_default: str = "Logs/integration-wizard-report.json"


PATHS = Paths()

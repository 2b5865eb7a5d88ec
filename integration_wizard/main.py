from __future__ import annotations

import argparse
import logging
import shlex
import sys
import time
from pathlib import Path
from typing import Callable, List, Optional, Sequence

from .catalog import DEFAULT_CATALOG, WizardConfig, load_catalog, select_tasks
from .lib.command import run_cmd
from .lib.env import PATHS
from .lib.net import HttpDownloader
from .lib.pkg import CommandInstaller, PackageInstaller
from .logging_utils import configure_logging
from .manifest_editor import FileDocumentStore, MalformedDocument, ensure_registry_file
from .models import InstallTask
from .orchestrator import BatchError, InstallOrchestrator, RunSummary
from .staging import Downloader, TarballStager
from .state_store import save_report

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILURES = 1
EXIT_BATCH_ERROR = 2


def _project_path(project: str, rel: str) -> Path:
    p = Path(rel)
    return p if p.is_absolute() else Path(project) / p


def describe_catalog(tasks: Sequence[InstallTask]) -> List[str]:
    lines: List[str] = []
    for t in tasks:
        tags = [t.kind.value, *t.requires_registries]
        mark = "x" if t.selected else " "
        lines.append(f"[{mark}] {t.label}  ({', '.join(tags)})")
        lines.append(f"      {t.reference}")
        if t.note:
            lines.append(f"      {t.note}")
    return lines


def ensure_all_registries(cfg: WizardConfig, *, project: str) -> bool:
    """Ensure every configured registry is declared in the manifest."""

    manifest = str(_project_path(project, cfg.manifest))
    store = FileDocumentStore()
    ok = True
    for name, entry in cfg.registries().items():
        try:
            ensure_registry_file(store, manifest, entry)
        except (FileNotFoundError, MalformedDocument) as e:
            logger.error("Failed to ensure scoped registry %s: %s", name, e)
            ok = False
    return ok


def build_orchestrator(
    cfg: WizardConfig,
    *,
    project: str,
    installer: Optional[PackageInstaller] = None,
    downloader: Optional[Downloader] = None,
    on_status: Optional[Callable[[str], None]] = None,
) -> InstallOrchestrator:
    if installer is None:
        installer = CommandInstaller(cfg.installer_command, cwd=project)

    refresh = None
    if cfg.refresh_command:
        refresh_argv = cfg.refresh_command

        def refresh() -> None:
            run_cmd(refresh_argv, check=False, cwd=project)

    return InstallOrchestrator(
        manifest_path=_project_path(project, cfg.manifest),
        registries=cfg.registries(),
        installer=installer,
        stager=TarballStager(downloader or HttpDownloader()),
        cache_dir=_project_path(project, cfg.cache_dir),
        refresh_index=refresh,
        on_status=on_status,
    )


def run(
    *,
    project: str = ".",
    catalog_path: str = DEFAULT_CATALOG,
    only: Sequence[str] = (),
    skip: Sequence[str] = (),
    installer_cmd: Optional[str] = None,
    report_path: Optional[str] = None,
    poll_interval: float = 0.2,
    installer: Optional[PackageInstaller] = None,
    downloader: Optional[Downloader] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> RunSummary:
    """Install the selected catalog packages into the project."""

    cfg = load_catalog(catalog_path)
    tasks = select_tasks(cfg.tasks(), only=only, skip=skip)

    if installer is None and installer_cmd:
        installer = CommandInstaller(shlex.split(installer_cmd), cwd=project)

    orch = build_orchestrator(
        cfg,
        project=project,
        installer=installer,
        downloader=downloader,
        on_status=lambda s: logger.info("Status: %s", s),
    )
    summary = orch.run(tasks, poll_interval=poll_interval, sleep=sleep)

    report = summary.to_dict()
    report["finished_at"] = time.strftime("%Y-%m-%dT%H:%M:%S%z")
    save_report(report_path or str(_project_path(project, PATHS.report_default)), report)
    return summary


def _print_summary(summary: RunSummary) -> None:
    print(summary.describe())
    for t in summary.failed:
        print(f"  FAILED  {t.label}: {t.error}")
    for name, err in summary.registry_errors.items():
        print(f"  REGISTRY {name}: {err}")
    if summary.manual:
        print("Manual steps:")
        for t in summary.manual:
            print(f"  {t.label}: {t.reference}")


def main(argv: Optional[list[str]] = None) -> int:
    p = argparse.ArgumentParser(prog="integration-wizard")
    p.add_argument("--project", default=".", help="Project root containing Packages/manifest.json")
    p.add_argument("--catalog", default=DEFAULT_CATALOG, help="Package catalog (yaml)")
    p.add_argument("--log", default=None, help="Log file (default: <project>/Logs/integration-wizard.log)")
    p.add_argument("--report", default=None, help="Run report path (json|yaml)")
    p.add_argument("--only", action="append", default=[], metavar="LABEL", help="Install only these packages")
    p.add_argument("--skip", action="append", default=[], metavar="LABEL", help="Do not install this package")
    p.add_argument("--list", action="store_true", help="Show the catalog and exit")
    p.add_argument("--registries-only", action="store_true", help="Ensure scoped registries, install nothing")
    p.add_argument("--installer-cmd", default=None, help='Install command, e.g. "openupm add {identifier}"')
    p.add_argument("--poll-interval", type=float, default=0.2, help="Seconds between install polls")
    p.add_argument("-v", "--verbose", action="store_true")

    args = p.parse_args(argv)

    configure_logging(
        log_path=args.log or str(_project_path(args.project, PATHS.log_default)),
        level=logging.DEBUG if args.verbose else logging.INFO,
    )

    try:
        cfg = load_catalog(args.catalog)
        if args.list:
            tasks = select_tasks(cfg.tasks(), only=args.only, skip=args.skip)
            print("\n".join(describe_catalog(tasks)))
            return EXIT_OK

        if args.registries_only:
            ok = ensure_all_registries(cfg, project=args.project)
            print("Registries ensured." if ok else "Registry update failed (see log).")
            return EXIT_OK if ok else EXIT_FAILURES

        summary = run(
            project=args.project,
            catalog_path=args.catalog,
            only=args.only,
            skip=args.skip,
            installer_cmd=args.installer_cmd,
            report_path=args.report,
            poll_interval=args.poll_interval,
        )
    except (BatchError, FileNotFoundError, ValueError) as e:
        logger.error("%s", e)
        print(f"error: {e}", file=sys.stderr)
        return EXIT_BATCH_ERROR

    _print_summary(summary)
    return EXIT_OK if summary.ok else EXIT_FAILURES


if __name__ == "__main__":
    raise SystemExit(main())

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterable, List

import yaml

from .lib.env import PATHS
from .models import InstallKind, InstallTask, RegistryEntry, git_reference, registry_reference

DEFAULT_CATALOG = str(Path(__file__).resolve().parent / "manifests" / "default.yaml")


def _task_reference(label: str, kind: InstallKind, item: Dict[str, Any]) -> str:
    if item.get("ref"):
        return str(item["ref"])

    if kind is InstallKind.GIT:
        git = item.get("git") or {}
        if not isinstance(git, dict) or not git.get("url"):
            raise ValueError(f"package {label}: git packages need ref or git.url")
        return git_reference(str(git["url"]), git.get("path"), git.get("tag"))

    if kind is InstallKind.REGISTRY:
        if not item.get("package"):
            raise ValueError(f"package {label}: registry packages need ref or package")
        return registry_reference(str(item["package"]), item.get("version"))

    if not item.get("url"):
        raise ValueError(f"package {label}: {kind.value} packages need ref or url")
    return str(item["url"])


def _task_from_item(item: Any) -> InstallTask:
    if not isinstance(item, dict):
        raise ValueError("packages entries must be mappings")
    label = str(item.get("label") or "").strip()
    if not label:
        raise ValueError("package label cannot be empty")
    try:
        kind = InstallKind(str(item.get("kind") or "").lower())
    except ValueError as e:
        raise ValueError(f"package {label}: unknown kind {item.get('kind')!r}") from e

    registries = item.get("registries") or []
    if isinstance(registries, str):
        registries = [registries]
    if not isinstance(registries, list):
        raise ValueError(f"package {label}: registries must be a list")

    return InstallTask(
        label=label,
        kind=kind,
        reference=_task_reference(label, kind, item),
        selected=bool(item.get("selected", True)),
        requires_registries=tuple(str(r) for r in registries),
        note=str(item.get("note") or ""),
        sha256=(str(item["sha256"]).lower() if item.get("sha256") else None),
    )


@dataclass(frozen=True)
class WizardConfig:
    raw: Dict[str, Any]

    @property
    def manifest(self) -> str:
        return str(self.raw.get("manifest") or PATHS.manifest)

    @property
    def cache_dir(self) -> str:
        return str(self.raw.get("cache_dir") or PATHS.cache_dir)

    @property
    def installer_command(self) -> List[str]:
        return [str(a) for a in ((self.raw.get("installer") or {}).get("command") or [])]

    @property
    def refresh_command(self) -> List[str]:
        return [str(a) for a in ((self.raw.get("refresh") or {}).get("command") or [])]

    def registries(self) -> Dict[str, RegistryEntry]:
        raw = self.raw.get("registries") or {}
        if not isinstance(raw, dict):
            raise ValueError("registries must be a mapping of name -> {url, scopes}")
        out: Dict[str, RegistryEntry] = {}
        for name, spec in raw.items():
            spec = spec or {}
            if not isinstance(spec, dict):
                raise ValueError(f"registry {name} must be a mapping")
            scopes = spec.get("scopes") or []
            if not isinstance(scopes, list):
                raise ValueError(f"registry {name}: scopes must be a list")
            out[str(name)] = RegistryEntry(name=str(name), url=str(spec.get("url") or ""), scopes=tuple(scopes))
        return out

    def tasks(self) -> List[InstallTask]:
        items = self.raw.get("packages") or []
        if not isinstance(items, list):
            raise ValueError("packages must be a list")
        tasks = [_task_from_item(item) for item in items]

        known = set(self.registries())
        for t in tasks:
            missing = [r for r in t.requires_registries if r not in known]
            if missing:
                raise ValueError(f"package {t.label}: unknown registries {', '.join(missing)}")
        return tasks


def load_catalog(path: str = DEFAULT_CATALOG) -> WizardConfig:
    p = Path(path)
    if not p.exists():
        raise FileNotFoundError(path)

    if p.suffix.lower() not in {".yaml", ".yml"}:
        raise ValueError("catalog must be YAML")

    raw = yaml.safe_load(p.read_text(encoding="utf-8")) or {}
    if not isinstance(raw, dict):
        raise ValueError(f"{p.name} must contain a mapping/object")

    return WizardConfig(raw=raw)


def select_tasks(
    tasks: Iterable[InstallTask],
    *,
    only: Iterable[str] = (),
    skip: Iterable[str] = (),
    none: bool = False,
) -> List[InstallTask]:
    """Apply label-based selection (case-insensitive) on top of catalog defaults."""

    tasks = list(tasks)
    by_label = {t.label.lower(): t for t in tasks}
    only_l = [o.lower() for o in only]
    skip_l = [s.lower() for s in skip]

    unknown = [name for name in [*only_l, *skip_l] if name not in by_label]
    if unknown:
        raise ValueError(f"Unknown package label(s): {', '.join(unknown)}")

    if none:
        for t in tasks:
            t.selected = False
    if only_l:
        for t in tasks:
            t.selected = t.label.lower() in only_l
    for name in skip_l:
        by_label[name].selected = False
    return tasks

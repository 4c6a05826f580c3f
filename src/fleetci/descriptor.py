# descriptor.py
# Finds module descriptor files inside repositories and turns them into
# Module records. The graph never touches the filesystem format directly.

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, List, Optional, Sequence
from xml.etree.ElementTree import Element, ParseError

from defusedxml import ElementTree

from .errors import ConfigError
from .model import Module, Repository

DESCRIPTOR_SUFFIX = ".s3mod"
SKIP_DIRS = {"node_modules", "build-ui", ".git"}


@dataclass(frozen=True)
class Descriptor:
    """A descriptor file found on disk, not parsed yet."""
    path: Path
    name: str
    module_path: Path
    repository: Repository
    entry: bool = False


def _truthy(value: Optional[str]) -> bool:
    return value is not None and value.strip().lower() in ("1", "true", "yes")


def find_descriptors(
    repositories: Iterable[Repository],
    *,
    entry: Sequence[Path] = (),
    exclude: Sequence[Path] = (),
) -> List[Descriptor]:
    """
    Walk every repository and collect descriptor files.

    The module name defaults to the directory holding the descriptor.
    `entry` holds resolved paths of explicit entry points; a descriptor
    matches when either its own path or its directory is listed.
    """
    entry_set = {Path(p).resolve() for p in entry}
    excluded = {Path(p).resolve() for p in exclude}
    found: List[Descriptor] = []

    for repo in repositories:
        root = repo.modules_root
        if not root.is_dir():
            continue

        # deterministic traversal
        for dirpath, dirnames, filenames in os.walk(root):
            current = Path(dirpath)
            dirnames[:] = sorted(
                d for d in dirnames
                if d not in SKIP_DIRS and (current / d).resolve() not in excluded
            )
            for fname in sorted(filenames):
                if not fname.endswith(DESCRIPTOR_SUFFIX):
                    continue
                desc_path = (current / fname).resolve()
                found.append(
                    Descriptor(
                        path=desc_path,
                        name=current.name,
                        module_path=current.resolve(),
                        repository=repo,
                        entry=desc_path in entry_set or current.resolve() in entry_set,
                    )
                )
    return found


def _depends_of(root: Element) -> List[str]:
    names: List[str] = []
    block = root.find("depends")
    if block is None:
        return names
    for item in block:
        if item.tag not in ("module", "ui_module"):
            continue
        name = item.get("name")
        if name and name not in names:
            names.append(name)
    return names


def parse_descriptor(desc: Descriptor) -> Optional[Module]:
    """
    Parse one descriptor file.

    Returns None when the file is not a module descriptor (no `ui_module`
    root); raises ConfigError when the file is not valid XML.
    """
    try:
        root = ElementTree.parse(str(desc.path)).getroot()
    except (ParseError, ValueError) as e:
        raise ConfigError("Malformed module descriptor", path=str(desc.path), error=str(e)) from e

    if root.tag != "ui_module":
        return None

    unit_test = root.find("unit_test")
    has_unit_test = unit_test is not None
    headless_only = has_unit_test and (
        _truthy(unit_test.get("onlyNode")) or _truthy(unit_test.get("headless_only"))
    )

    return Module(
        name=root.get("name") or desc.name,
        repository=desc.repository.name,
        path=str(desc.module_path),
        depends_on=_depends_of(root),
        has_unit_test=has_unit_test,
        browser_capable=has_unit_test and desc.repository.unit_in_browser and not headless_only,
        is_cdn_asset=root.get("for_cdn") == "1",
        is_required=_truthy(root.get("required")),
        stable_id=root.get("id"),
        descriptor=str(desc.path),
        entry=desc.entry,
    )


def resolve_entry_points(entry: Sequence[str], cwd: Path | None = None) -> List[Path]:
    """Make entry point paths absolute; a path that does not exist is fatal."""
    base = cwd or Path.cwd()
    out: List[Path] = []
    for raw in entry:
        p = Path(raw).expanduser()
        if not p.is_absolute():
            p = base / p
        p = p.resolve()
        if not p.exists():
            raise ConfigError(
                f"Module {p} given as entry point was not found, check the path",
                entry=raw,
            )
        out.append(p)
    return out

"""Collision-free branch names.

Two generators share the same shape: build ``<namespace>/<slug>``, return
it if no existing ref has that name, otherwise try numeric suffixes
``-2 .. -999`` and finally a timestamped name.

* :func:`pick_branch_name` walks a fixed list of place names.
* :func:`pick_task_branch_name` slugifies a free-text task description.

The ``pick_*`` functions are pure; the ``generate_*`` coroutines read the
repository's refs and delegate to them.
"""

from __future__ import annotations

import re
import time
from collections.abc import Iterable, Sequence
from pathlib import Path

from agentfleet.git.exec import CommandRunner, git_exec

PLACE_NAMES: tuple[str, ...] = (
    "Oslo", "Bergen", "Trondheim", "Stavanger", "Drammen",
    "Fredrikstad", "Kristiansand", "Sandnes", "Tromsø", "Sarpsborg",
    "Bodø", "Sandefjord", "Ålesund", "Larvik", "Tønsberg",
    "Arendal", "Haugesund", "Porsgrunn", "Skien", "Moss",
    "Halden", "Harstad", "Molde", "Lillehammer", "Kongsberg",
    "Gjøvik", "Horten", "Narvik", "Hammerfest", "Alta",
    "Hamar", "Elverum", "Steinkjer", "Namsos", "Kristiansund",
    "Grimstad", "Mandal", "Flekkefjord", "Egersund", "Bryne",
    "Leirvik", "Odda", "Voss", "Førde", "Florø",
    "Ørsta", "Volda", "Ulsteinvik", "Fosnavåg", "Åndalsnes",
    "Sunndalsøra", "Orkanger", "Malvik", "Verdal", "Levanger",
    "Røros", "Tynset", "Mosjøen", "Sandnessjøen", "Mo",
    "Fauske", "Sortland", "Svolvær", "Leknes", "Stokmarknes",
    "Finnsnes", "Bardufoss", "Sjøvegan", "Skånland", "Kvæfjord",
    "Honningsvåg", "Lakselv", "Tana", "Vadsø", "Vardø",
    "Kirkenes", "Kautokeino", "Karasjok", "Båtsfjord", "Berlevåg",
    "Kongsvinger", "Mysen", "Askim", "Ski", "Ås",
    "Drøbak", "Lillestrøm", "Jessheim", "Eidsvoll", "Hønefoss",
    "Fagernes", "Rjukan", "Notodden", "Bø", "Kragerø",
    "Risør", "Lyngdal", "Farsund", "Sirdal", "Sauda",
)

MAX_TASK_SLUG_LENGTH = 50
MAX_SUFFIX = 999

_FOLD = str.maketrans({"æ": "ae", "ø": "o", "å": "a"})
_NON_ALNUM = re.compile(r"[^a-z0-9]")
_HYPHEN_RUN = re.compile(r"-+")


def slugify(name: str, max_length: int | None = None) -> str:
    slug = name.lower().translate(_FOLD)
    slug = _NON_ALNUM.sub("-", slug)
    slug = _HYPHEN_RUN.sub("-", slug).strip("-")
    if max_length is not None:
        slug = slug[:max_length].rstrip("-")
    return slug


def branch_prefix(namespace: str) -> str:
    return namespace.lower() + "/"


def namespace_for(repo_path: str | Path) -> str:
    """Default namespace of a repository: its directory name."""
    return Path(repo_path).name


def _now_ms() -> int:
    return int(time.time() * 1000)


def pick_branch_name(
    existing: Iterable[str],
    namespace: str,
    candidates: Sequence[str] = PLACE_NAMES,
) -> str:
    taken = set(existing)
    prefix = branch_prefix(namespace)
    slugs = [slugify(c) for c in candidates]

    for slug in slugs:
        candidate = f"{prefix}{slug}"
        if candidate not in taken:
            return candidate

    for slug in slugs:
        for suffix in range(2, MAX_SUFFIX + 1):
            candidate = f"{prefix}{slug}-{suffix}"
            if candidate not in taken:
                return candidate

    return f"{prefix}session-{_now_ms()}"


def pick_task_branch_name(existing: Iterable[str], namespace: str, description: str) -> str:
    prefix = branch_prefix(namespace)
    slug = slugify(description, MAX_TASK_SLUG_LENGTH)
    if not slug:
        return f"{prefix}task-{_now_ms()}"

    taken = set(existing)
    base = f"{prefix}{slug}"
    if base not in taken:
        return base
    for suffix in range(2, MAX_SUFFIX + 1):
        candidate = f"{base}-{suffix}"
        if candidate not in taken:
            return candidate
    return f"{prefix}task-{_now_ms()}"


async def existing_branches(repo_path: str | Path, git: CommandRunner = git_exec) -> set[str]:
    stdout = await git(["branch", "-a", "--format=%(refname:short)"], repo_path)
    return {line.strip() for line in stdout.splitlines() if line.strip()}


async def generate_branch_name(
    repo_path: str | Path,
    namespace: str | None = None,
    git: CommandRunner = git_exec,
) -> str:
    existing = await existing_branches(repo_path, git)
    return pick_branch_name(existing, namespace or namespace_for(repo_path))


async def generate_task_branch_name(
    repo_path: str | Path,
    description: str,
    namespace: str | None = None,
    git: CommandRunner = git_exec,
) -> str:
    ns = namespace or namespace_for(repo_path)
    if not slugify(description, MAX_TASK_SLUG_LENGTH):
        return pick_task_branch_name((), ns, description)
    existing = await existing_branches(repo_path, git)
    return pick_task_branch_name(existing, ns, description)

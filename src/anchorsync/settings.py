"""Runtime settings for the anchor index.

Values come from the process environment, optionally seeded from a ``.env``
file (keys already present in the environment win). CLI flags override the
result.

    ANCHORSYNC_DB                  DuckDB file (default ``anchors.duckdb``)
    ANCHORSYNC_DOCUMENT_ROUTE      route segment for anchor links (``blog``)
    ANCHORSYNC_EQUATION_NUMBERING  ``creation_order`` | ``content_order``
    ANCHORSYNC_REQUESTER_HEADER    header carrying the requester id
"""
from __future__ import annotations

import os
from collections.abc import Mapping, MutableMapping
from dataclasses import dataclass
from pathlib import Path
from typing import Literal, cast


type EquationNumbering = Literal["creation_order", "content_order"]

EQUATION_NUMBERING_MODES: tuple[EquationNumbering, ...] = ("creation_order", "content_order")

DEFAULT_DB_PATH = "anchors.duckdb"
DEFAULT_DOCUMENT_ROUTE = "blog"
DEFAULT_REQUESTER_HEADER = "x-anchors-user"


@dataclass(frozen=True, slots=True)
class Settings:
    db_path: Path = Path(DEFAULT_DB_PATH)
    document_route: str = DEFAULT_DOCUMENT_ROUTE
    # "creation_order" keeps equations unnumbered in storage and derives their
    # ordinal from row creation order at read time; "content_order" numbers
    # them like every other kind.
    equation_numbering: EquationNumbering = "creation_order"
    requester_header: str = DEFAULT_REQUESTER_HEADER

    def __post_init__(self) -> None:
        if self.equation_numbering not in EQUATION_NUMBERING_MODES:
            raise ValueError(
                f"equation_numbering must be one of {EQUATION_NUMBERING_MODES}, "
                f"got {self.equation_numbering!r}"
            )
        if not self.document_route.strip("/"):
            raise ValueError("document_route cannot be empty")


def load_dotenv(path: Path, env: MutableMapping[str, str]) -> None:
    """Copy ``KEY=value`` lines from *path* into *env* without overriding."""
    if not path.exists():
        return
    for line in path.read_text().splitlines():
        line = line.strip()
        if not line or line.startswith("#"):
            continue
        if "=" not in line:
            continue
        key, _, value = line.partition("=")
        key = key.strip()
        value = value.strip().strip("'\"")
        if key and key not in env:
            env[key] = value


def load_settings(
    env: Mapping[str, str] | None = None,
    *,
    dotenv_path: Path | None = None,
) -> Settings:
    """Build settings from *env* (default: ``os.environ``) and a ``.env`` file."""
    values: dict[str, str] = dict(os.environ if env is None else env)
    if dotenv_path is not None:
        load_dotenv(dotenv_path, values)

    numbering = values.get("ANCHORSYNC_EQUATION_NUMBERING", "creation_order").strip().lower()
    return Settings(
        db_path=Path(values.get("ANCHORSYNC_DB", DEFAULT_DB_PATH)),
        document_route=values.get("ANCHORSYNC_DOCUMENT_ROUTE", DEFAULT_DOCUMENT_ROUTE).strip("/ "),
        equation_numbering=cast(EquationNumbering, numbering),
        requester_header=values.get(
            "ANCHORSYNC_REQUESTER_HEADER", DEFAULT_REQUESTER_HEADER,
        ).strip().lower(),
    )

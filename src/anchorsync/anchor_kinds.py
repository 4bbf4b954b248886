"""Anchor kind descriptors and the delimiter grammars they carry.

Every anchor kind is described once here; the extractor, the reconciler,
the store and the reference resolver are all generic over these
descriptors instead of carrying one copy of the logic per kind.

Block grammars (``descripción`` is part of the wire format)::

    $${#eq:<id>[|descripción: <text>]}<latex>$$
    :::theorem{#thm:<id>[|descripción: <text>]}<body>:::
    :::proof{#prf:<id>[|descripción: <text>]}<body>:::
    :::definition{#def:<id>[|descripción: <text>]}<body>:::
    ![<alt>](<url>){#img:<id>[|descripción: <text>]}

Reference tokens::

    {{<tag>:[<slug>/]<anchorId>|<linkText>[|embed]}}
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Literal

from anchorsync.errors import UnknownAnchorKindError


type AnchorKind = Literal["equation", "theorem", "proof", "definition", "imageAnchor"]
type KindTag = Literal["eq", "thm", "prf", "def", "img"]

DESCRIPTION_LABEL = "descripción"

# Shared fragments. The id stops at the first ``|`` or ``}``; the optional
# description runs to the closing brace.
_ID_FRAGMENT = r"(?P<id>[^}|]+)"
_DESC_FRAGMENT = rf"(?:\|{DESCRIPTION_LABEL}:\s*(?P<description>[^}}]+))?"


def _block_pattern(block: str, tag: str) -> re.Pattern[str]:
    return re.compile(
        rf":::{block}\{{#{tag}:{_ID_FRAGMENT}{_DESC_FRAGMENT}\}}"
        r"(?P<body>[\s\S]*?):::"
    )


_EQUATION_RE = re.compile(
    rf"\$\$\{{#eq:{_ID_FRAGMENT}{_DESC_FRAGMENT}\}}(?P<body>[\s\S]*?)\$\$"
)
_IMAGE_RE = re.compile(
    r"!\[(?P<alt>[^\]]*)\]\((?P<url>[^)]+)\)"
    rf"\{{#img:{_ID_FRAGMENT}{_DESC_FRAGMENT}\}}"
)

REFERENCE_TOKEN_RE = re.compile(
    r"\{\{(?P<tag>eq|thm|prf|def|img):(?P<path>[^}|]+)"
    r"\|(?P<link_text>[^}|]+)(?:\|(?P<flag>[^}]+))?\}\}"
)

EMBED_FLAG = "embed"


@dataclass(frozen=True, slots=True)
class KindDescriptor:
    """Static description of one anchor kind."""

    kind: AnchorKind
    tag: KindTag              # reference-token tag and HTML id prefix
    table: str                # DuckDB table holding this kind
    pattern: re.Pattern[str]
    owns_rows: bool = True    # False: attach/detach on pre-existing rows only
    numbered: bool = True
    embeddable: bool = False

    def html_id(self, anchor_id: str) -> str:
        """Fragment id the renderer gives this anchor, e.g. ``thm-fermat``."""
        return f"{self.tag}-{anchor_id}"


ANCHOR_KINDS: dict[AnchorKind, KindDescriptor] = {
    "equation": KindDescriptor(
        kind="equation",
        tag="eq",
        table="equations",
        pattern=_EQUATION_RE,
    ),
    "theorem": KindDescriptor(
        kind="theorem",
        tag="thm",
        table="theorems",
        pattern=_block_pattern("theorem", "thm"),
        embeddable=True,
    ),
    "proof": KindDescriptor(
        kind="proof",
        tag="prf",
        table="proofs",
        pattern=_block_pattern("proof", "prf"),
        embeddable=True,
    ),
    "definition": KindDescriptor(
        kind="definition",
        tag="def",
        table="definitions",
        pattern=_block_pattern("definition", "def"),
        embeddable=True,
    ),
    "imageAnchor": KindDescriptor(
        kind="imageAnchor",
        tag="img",
        table="images",
        pattern=_IMAGE_RE,
        owns_rows=False,
        numbered=False,
    ),
}

KIND_BY_TAG: dict[str, AnchorKind] = {d.tag: d.kind for d in ANCHOR_KINDS.values()}

# Friendly aliases accepted at the HTTP/CLI boundary.
_KIND_ALIASES: dict[str, AnchorKind] = {
    "equations": "equation",
    "theorems": "theorem",
    "proofs": "proof",
    "definitions": "definition",
    "image": "imageAnchor",
    "images": "imageAnchor",
    "imageanchor": "imageAnchor",
}


def get_descriptor(kind: str) -> KindDescriptor:
    """Look up a descriptor by kind name, tag or plural alias."""
    key = (kind or "").strip()
    if key in ANCHOR_KINDS:
        return ANCHOR_KINDS[key]  # type: ignore[index]
    lowered = key.lower()
    if lowered in KIND_BY_TAG:
        return ANCHOR_KINDS[KIND_BY_TAG[lowered]]
    if lowered in _KIND_ALIASES:
        return ANCHOR_KINDS[_KIND_ALIASES[lowered]]
    raise UnknownAnchorKindError(kind)


def split_reference_path(path: str) -> tuple[str | None, str]:
    """Split ``slug/anchor`` into its parts.

    Only a single ``/`` marks a cross-document reference; anything else is
    treated as a same-document anchor id.
    """
    parts = path.split("/")
    if len(parts) == 2:
        slug = parts[0].strip()
        return (slug or None), parts[1].strip()
    return None, path.strip()

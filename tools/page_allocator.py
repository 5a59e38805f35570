#!/usr/bin/env python3
"""Assign sprites to atlas pages and resolve atlas filenames.

A category's atlases form pages 0..N. Only the highest page may be
partially filled. New sprites either top up that page (which is then
re-rendered with its old members first) or, when it is full, start the
next page; full pages are never touched again.

Page 0 has two historical names: "{category}.png" from the days when a
category was always a single sheet ("legacy"), and "{category}_0.png"
("explicit"). Every other page is "{category}_{index}.png".
"""
from __future__ import annotations

import re
from dataclasses import dataclass, field

CELLS_PER_PAGE = 16

LEGACY = "legacy"
EXPLICIT = "explicit"
NAMING_CONVENTIONS = (LEGACY, EXPLICIT)


@dataclass
class PagePlan:
    """One atlas page to render."""

    index: int
    atlas: str
    members: list[str] = field(default_factory=list)
    replaces_existing: bool = False  # re-render of an open page


def atlas_name(category: str, index: int, naming: str = LEGACY) -> str:
    if naming not in NAMING_CONVENTIONS:
        raise ValueError(f"unknown page naming convention: {naming!r}")
    if index == 0 and naming == LEGACY:
        return f"{category}.png"
    return f"{category}_{index}.png"


def parse_atlas_index(category: str, name: str) -> int | None:
    """Page index encoded in an atlas filename, or None if it isn't one of ours."""
    if name == f"{category}.png":
        return 0
    m = re.fullmatch(re.escape(category) + r"_(\d+)\.png", name)
    if m:
        return int(m.group(1))
    return None


def infer_page0_naming(category: str, atlas_names, pages_needed: int = 1) -> str:
    """Guess the page 0 convention from atlas names already in use.

    A legacy-named sheet wins; otherwise any indexed sheet means the
    category is multi-page and page 0 must be indexed too. With no sheet
    at all, *pages_needed* is the number of pages about to be created: a
    category that starts out on several pages is indexed from page 0.
    """
    names = set(atlas_names)
    if f"{category}.png" in names:
        return LEGACY
    if any(parse_atlas_index(category, n) is not None for n in names):
        return EXPLICIT
    if pages_needed > 1:
        return EXPLICIT
    return LEGACY


def page_count(sprite_count: int, cells_per_page: int = CELLS_PER_PAGE) -> int:
    """Number of pages needed to hold *sprite_count* sprites."""
    return -(-sprite_count // cells_per_page)


def highest_page(category: str, pages: dict[str, list[str]]):
    """Return (index, atlas, members) of the highest-index page, or None.

    Atlas names that don't belong to the category are ignored.
    """
    best = None
    for atlas, members in pages.items():
        index = parse_atlas_index(category, atlas)
        if index is None:
            continue
        key = (index, len(members), atlas)
        if best is None or key > best[0]:
            best = (key, (index, atlas, members))
    return best[1] if best else None


def open_page(category: str, pages: dict[str, list[str]], cells_per_page: int = CELLS_PER_PAGE):
    """The highest page if it still has free cells, else None."""
    top = highest_page(category, pages)
    if top is None or len(top[2]) >= cells_per_page:
        return None
    return top


def allocate_pages(
    category: str,
    new_sprites: list[str],
    pages: dict[str, list[str]],
    cells_per_page: int = CELLS_PER_PAGE,
    naming: str = LEGACY,
    available=None,
) -> list[PagePlan]:
    """Split new sprites (plus an open page's members) into page batches.

    *available*, when given, is the set of sprite paths that can actually
    be loaded; open-page members outside it are dropped with a warning.
    """
    if cells_per_page < 1:
        raise ValueError(f"cells_per_page must be positive, got {cells_per_page}")
    if not new_sprites:
        return []

    top = highest_page(category, pages)
    carried = []
    keep_name = None
    if top is None:
        start = 0
    else:
        index, atlas, members = top
        if len(members) >= cells_per_page:
            start = index + 1
        else:
            start = index
            keep_name = atlas
            for rel_path in members:
                if available is not None and rel_path not in available:
                    print(f"  WARNING: {rel_path} (in {atlas}) could not be loaded; skipped")
                    continue
                carried.append(rel_path)

    seen = set(carried)
    combined = carried + [p for p in sorted(new_sprites) if p not in seen]

    plans = []
    for offset, i in enumerate(range(0, len(combined), cells_per_page)):
        index = start + offset
        reuse = offset == 0 and keep_name is not None
        name = keep_name if reuse else atlas_name(category, index, naming)
        plans.append(PagePlan(index, name, combined[i:i + cells_per_page], reuse))
    return plans

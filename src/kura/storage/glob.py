# SPDX-License-Identifier: MIT
"""Glob resolution across flat key stores and hierarchical filesystems.

Pattern syntax (not regular expressions):

``*``
    any run of characters within one path segment
``**``
    zero or more whole path segments
``?``
    exactly one character other than ``/``
``[abc]`` ``[a-z]`` ``[!abc]``
    one character from (or not from) a class
``{json,yaml}``
    any of the comma-separated alternatives
``\\``
    escapes the next character

Matching is case-sensitive and anchored to the full path relative to the
backend's root, so ``a/**/users/*.json`` only matches files that sit directly
inside a ``users`` directory somewhere below ``a``.

Flat key stores enumerate with :func:`paginate`; hierarchical backends without
a native recursive glob enumerate with :func:`walk`.  Both apply :func:`match`
to every candidate.
"""

from __future__ import annotations

import logging
import re
from collections import deque
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from functools import lru_cache

import anyio

from ..exceptions import KuraError, ListingError, PatternError
from .protocol import FileInfo, Filesystem, Listing

logger = logging.getLogger("kura")

_MAGIC_CHARS = frozenset("*?[{")

MAX_PAGE_SIZE = 1000
"""Largest page a flat key store is asked for (the S3 ``ListObjectsV2`` limit)."""


# ------------------------------------------------------------------
# Pattern inspection
# ------------------------------------------------------------------


def _first_magic(pattern: str) -> int:
    i = 0
    while i < len(pattern):
        c = pattern[i]
        if c == "\\":
            i += 2
            continue
        if c in _MAGIC_CHARS:
            return i
        i += 1
    return -1


def _unescape(text: str) -> str:
    return re.sub(r"\\(.)", r"\1", text, flags=re.DOTALL)


def normalize_pattern(pattern: str) -> str:
    """Strip a leading ``./`` and map ``.`` to the root (``""``)."""
    while pattern.startswith("./"):
        pattern = pattern[2:]
    return "" if pattern == "." else pattern


def has_magic(pattern: str) -> bool:
    """Return ``True`` if *pattern* contains an unescaped wildcard."""
    return _first_magic(pattern) >= 0


def literal_prefix(pattern: str) -> str:
    """Longest wildcard-free prefix of *pattern*, unescaped.

    Flat key stores list from this prefix.
    """
    pattern = normalize_pattern(pattern)
    idx = _first_magic(pattern)
    return _unescape(pattern if idx < 0 else pattern[:idx])


def split_pattern(pattern: str) -> tuple[str, str]:
    """Split *pattern* into a literal base directory and a glob remainder.

    The base is everything before the last ``/`` preceding the first
    wildcard; the remainder is empty when the pattern has no wildcard at all.

    Examples::

        >>> split_pattern("logs/**/*.json")
        ('logs', '**/*.json')
        >>> split_pattern("*.json")
        ('', '*.json')
        >>> split_pattern("logs/a.json")
        ('logs/a.json', '')
    """
    pattern = normalize_pattern(pattern)
    idx = _first_magic(pattern)
    if idx < 0:
        return _unescape(pattern), ""
    slash = pattern.rfind("/", 0, idx)
    if slash < 0:
        return "", pattern
    base = pattern[:slash] or "/"
    return _unescape(base), pattern[slash + 1 :]


def join_path(directory: str, name: str) -> str:
    """Join a backend-relative directory and an entry name with ``/``."""
    if not directory or directory == ".":
        return name
    return f"{directory.rstrip('/')}/{name}"


# ------------------------------------------------------------------
# Translation to regular expressions
# ------------------------------------------------------------------


def _class_end(text: str, start: int) -> int:
    """Index of the ``]`` closing the class opened at *start*, or -1."""
    j = start + 1
    if j < len(text) and text[j] in "!^":
        j += 1
    if j < len(text) and text[j] == "]":
        j += 1
    return text.find("]", j)


def _brace_end(text: str, start: int) -> int:
    """Index of the ``}`` closing the group opened at *start*, or -1."""
    depth = 0
    i = start
    while i < len(text):
        c = text[i]
        if c == "\\":
            i += 2
            continue
        if c == "[":
            end = _class_end(text, i)
            if end > 0:
                i = end + 1
                continue
        elif c == "{":
            depth += 1
        elif c == "}":
            depth -= 1
            if depth == 0:
                return i
        i += 1
    return -1


def _split_top_level(text: str, sep: str) -> list[str]:
    """Split on *sep* outside classes, brace groups and escapes."""
    parts: list[str] = []
    current: list[str] = []
    depth = 0
    i = 0
    while i < len(text):
        c = text[i]
        if c == "\\" and i + 1 < len(text):
            current.append(text[i : i + 2])
            i += 2
            continue
        if c == "[":
            end = _class_end(text, i)
            if end > 0:
                current.append(text[i : end + 1])
                i = end + 1
                continue
        elif c == "{":
            depth += 1
        elif c == "}" and depth:
            depth -= 1
        elif c == sep and depth == 0:
            parts.append("".join(current))
            current = []
            i += 1
            continue
        current.append(c)
        i += 1
    parts.append("".join(current))
    return parts


def _translate_segment(segment: str, pattern: str) -> str:
    out: list[str] = []
    i = 0
    while i < len(segment):
        c = segment[i]
        if c == "\\":
            if i + 1 >= len(segment):
                raise PatternError(pattern, "trailing escape character")
            out.append(re.escape(segment[i + 1]))
            i += 2
        elif c == "*":
            # a run of stars inside a segment behaves like a single star
            while i < len(segment) and segment[i] == "*":
                i += 1
            out.append("[^/]*")
        elif c == "?":
            out.append("[^/]")
            i += 1
        elif c == "[":
            end = _class_end(segment, i)
            if end < 0:
                raise PatternError(pattern, "unterminated character class")
            body = segment[i + 1 : end]
            negate = body[:1] in ("!", "^")
            if negate:
                body = body[1:]
            body = body.replace("\\", "\\\\").replace("[", "\\[").replace("]", "\\]")
            out.append(f"[^/{body}]" if negate else f"[{body}]")
            i = end + 1
        elif c == "{":
            end = _brace_end(segment, i)
            if end < 0:
                raise PatternError(pattern, "unterminated brace group")
            alternatives = _split_top_level(segment[i + 1 : end], ",")
            out.append("(?:" + "|".join(_translate_segment(alt, pattern) for alt in alternatives) + ")")
            i = end + 1
        else:
            out.append(re.escape(c))
            i += 1
    return "".join(out)


def _translate(pattern: str) -> str:
    segments: list[str] = []
    for segment in _split_top_level(pattern, "/"):
        if segment == "**" and segments and segments[-1] == "**":
            continue
        segments.append(segment)

    out: list[str] = []
    last = len(segments) - 1
    for i, segment in enumerate(segments):
        if segment == "**":
            if i < last:
                out.append("(?:[^/]+/)*")
            elif i == 0:
                out.append(".*")
            else:
                # trailing "/**": the previous segment itself or anything below it
                out[-1] = out[-1][:-1]
                out.append("(?:/.*)?")
        else:
            out.append(_translate_segment(segment, pattern) + ("/" if i < last else ""))
    return "".join(out)


@lru_cache(maxsize=256)
def _compile(pattern: str) -> re.Pattern[str]:
    try:
        return re.compile(_translate(pattern), re.DOTALL)
    except re.error as e:
        raise PatternError(pattern, str(e)) from e


def validate_pattern(pattern: str) -> None:
    """Raise :class:`PatternError` if *pattern* is malformed."""
    _compile(normalize_pattern(pattern))


def match(pattern: str, path: str) -> bool:
    """Return ``True`` if *path* matches *pattern* in full.

    Raises:
        PatternError: If the pattern is malformed.
    """
    return _compile(normalize_pattern(pattern)).fullmatch(path) is not None


# ------------------------------------------------------------------
# Enumeration strategies
# ------------------------------------------------------------------


@dataclass(frozen=True)
class Page:
    """One page of a flat key-store listing."""

    items: list[FileInfo] = field(default_factory=list)
    next_token: str | None = None


FetchPage = Callable[[str, int, "str | None"], Awaitable[Page]]
"""``fetch_page(prefix, page_size, continuation_token) -> Page``"""

ListDir = Callable[[str], Awaitable[list[FileInfo]]]
"""``list_dir(directory) -> entries`` with ``full_path`` set on every entry."""


async def paginate(fetch_page: FetchPage, pattern: str, *, max_items: int) -> Listing:
    """Enumerate a flat key store page by page.

    Lists from the pattern's literal prefix and keeps keys whose full path
    matches the pattern (every key under the prefix when the pattern has no
    wildcard).  Stops when the backend has no more pages, or once *max_items*
    keys have been fetched; in the latter case the listing is marked
    ``truncated`` instead of raising.
    """
    if max_items < 1:
        raise ValueError(f"max_items must be positive, got {max_items}")
    validate_pattern(pattern)
    pattern = normalize_pattern(pattern)
    glob = has_magic(pattern)
    prefix = literal_prefix(pattern)

    output = Listing()
    fetched = 0
    token: str | None = None
    while True:
        page = await fetch_page(prefix, min(MAX_PAGE_SIZE, max_items - fetched), token)
        fetched += len(page.items)
        for info in page.items:
            if glob and not match(pattern, info.full_path):
                continue
            output.append(info)

        if page.next_token is None:
            break
        if fetched >= max_items:
            output.truncated = True
            logger.info("Listing %r stopped at %d fetched keys (cap reached)", pattern, fetched)
            break
        token = page.next_token

    logger.debug("Listed %d of %d keys under %r for %r", len(output), fetched, prefix, pattern)
    return output


async def walk(list_dir: ListDir, pattern: str) -> Listing:
    """Enumerate a hierarchical backend breadth-first from the pattern's base.

    Descends only as deep as the pattern can reach (unbounded with ``**``)
    and keeps every entry, file or directory, whose path matches.  A missing
    base directory yields an empty listing.
    """
    validate_pattern(pattern)
    pattern = normalize_pattern(pattern)
    base, remainder = split_pattern(pattern)
    if not remainder:
        return Listing(await list_dir(base))

    max_depth = None if "**" in remainder else remainder.count("/") + 1
    output = Listing()
    queue: deque[tuple[str, int]] = deque([(base, 1)])
    while queue:
        directory, depth = queue.popleft()
        try:
            entries = await list_dir(directory)
        except FileNotFoundError:
            if directory == base:
                return output
            raise
        for info in entries:
            if match(pattern, info.full_path):
                output.append(info)
            if info.is_dir and (max_depth is None or depth < max_depth):
                queue.append((info.full_path, depth + 1))
    return output


# ------------------------------------------------------------------
# Entry point
# ------------------------------------------------------------------


async def list_files(fs: Filesystem, pattern: str, *, timeout: float | None = None) -> Listing:
    """List everything on *fs* matching *pattern*.

    Args:
        fs: Backend to enumerate.
        pattern: Directory, key prefix, or glob pattern.
        timeout: Seconds before the listing is abandoned.  ``None`` waits forever.

    Returns:
        The matching entries.  Check ``Listing.truncated`` when the backend
        enforces an item cap.

    Raises:
        PatternError: If the pattern is malformed.
        ListingError: If the backend fails while enumerating.
        TimeoutError: If *timeout* elapses.  No partial results are returned.
    """
    validate_pattern(pattern)
    try:
        with anyio.fail_after(timeout):
            listing = await fs.read_dir(pattern)
    except (KuraError, TimeoutError):
        raise
    except Exception as e:
        raise ListingError(pattern, str(e)) from e

    logger.debug("Listed %d entries for %r (truncated=%s)", len(listing), pattern, listing.truncated)
    return listing

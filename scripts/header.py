#!/usr/bin/env python3
"""
header.py - Filter Header Parsing and Checksums

Published filter files carry an Adblock-style comment header in front of the
rules. This module splits that header from the rules and computes the
checksum line that lets list consumers detect corrupted downloads.

File Layout:
    ! Checksum: <md5, base64, no padding>
    ! Title: ...
    ! Version: <integer>
    ...
    !                       <- bare separator, rules start after it
    ||ads.example.com^

Checksum Normalization:
    The checksum is taken over everything after the checksum line, but only
    after carriage returns are removed and runs of newlines are collapsed.
    A list re-saved with CRLF endings or with extra blank lines therefore
    keeps the same checksum.

    "! Title: x\\r\\n\\r\\n||a.com^"  →  "! Title: x\\n||a.com^"
"""

from __future__ import annotations

import base64
import hashlib
import re
from typing import Final, NamedTuple


# =============================================================================
# CONSTANTS
# =============================================================================

#: Every header line starts with this marker
COMMENT_MARKER: Final[str] = "!"

#: Prefix of the checksum line (first line of a published filter)
CHECKSUM_PREFIX: Final[str] = "! Checksum:"

# Scanner states
IN_HEADER: Final[str] = "header"
IN_BODY: Final[str] = "body"


# =============================================================================
# REGEX PATTERNS
# =============================================================================

#: Version line inside the header: "! Version: 42"
VERSION_PATTERN: Final[re.Pattern[str]] = re.compile(r"! Version: ([0-9]+)")

#: Full checksum line including its newline, so it can be cut out cleanly
CHECKSUM_LINE_PATTERN: Final[re.Pattern[str]] = re.compile(
    r"^! Checksum:[ \t]*([A-Za-z0-9+/]*)[ \t]*(?:\r?\n|$)",
    re.MULTILINE,
)

#: Runs of newlines collapsed by normalize()
NEWLINE_RUN_PATTERN: Final[re.Pattern[str]] = re.compile(r"\n+")


# =============================================================================
# DATA STRUCTURES
# =============================================================================

class ParsedFilter(NamedTuple):
    """
    A filter file split into its two regions.

    Attributes:
        header: Header lines joined with newlines (separator included)
        body: Rule lines joined with newlines, surrounding whitespace trimmed

    Example:
        >>> parse("! Title: x\\n!\\n||a.com^")
        ParsedFilter(header='! Title: x\\n!', body='||a.com^')
    """
    header: str
    body: str


# =============================================================================
# PARSING
# =============================================================================

def parse(text: str) -> ParsedFilter:
    """
    Split filter text into header and rule body.

    Lines are scanned from the top while in the header state:
    - a line that is exactly "!" (after trimming) closes the header;
      the rules start on the next line
    - a line that does not start with "!" switches to the body state;
      the rules start on that line

    If every line is a comment and no separator is seen, the whole text is
    header and the body is empty.

    Args:
        text: Complete filter text

    Returns:
        ParsedFilter with header and body

    Example:
        >>> parse("||a.com^\\n||b.com^").header
        ''
        >>> parse("").body
        ''
    """
    lines = text.split("\n")
    state = IN_HEADER
    body_start = len(lines)

    for index, line in enumerate(lines):
        stripped = line.strip()
        if stripped == COMMENT_MARKER:
            body_start = index + 1
            state = IN_BODY
        elif not stripped.startswith(COMMENT_MARKER):
            body_start = index
            state = IN_BODY
        if state == IN_BODY:
            break

    return ParsedFilter(
        header="\n".join(lines[:body_start]),
        body="\n".join(lines[body_start:]).strip(),
    )


def extract_version(text: str) -> int | None:
    """
    Read the version number from a filter's header.

    Only the header region is searched, so a "! Version:" comment inside the
    rules is ignored.

    Args:
        text: Complete filter text

    Returns:
        The version, or None if the header has no version line

    Example:
        >>> extract_version("! Version: 7\\n!\\n||a.com^")
        7
        >>> extract_version("||a.com^") is None
        True
    """
    match = VERSION_PATTERN.search(parse(text).header)
    return int(match.group(1)) if match else None


def has_checksum(text: str) -> bool:
    """Check if the filter's header carries a checksum line."""
    return any(
        line.strip().startswith(CHECKSUM_PREFIX)
        for line in parse(text).header.split("\n")
    )


# =============================================================================
# CHECKSUMS
# =============================================================================

def normalize(text: str) -> str:
    """
    Normalize text before hashing.

    Removes every carriage return and collapses each run of one or more
    newlines into a single newline.

    Example:
        >>> normalize("a\\r\\n\\r\\n\\nb")
        'a\\nb'
    """
    return NEWLINE_RUN_PATTERN.sub("\n", text.replace("\r", ""))


def checksum(text: str) -> str:
    """
    Compute the checksum value for a filter's header and body.

    MD5 over the normalized UTF-8 text, base64 encoded, trailing "="
    padding removed. MD5 is only used as a change detector here.

    Args:
        text: Filter text WITHOUT the checksum line

    Returns:
        Checksum value (22 characters)
    """
    digest = hashlib.md5(normalize(text).encode("utf-8")).digest()
    return base64.b64encode(digest).decode("ascii").rstrip("=")


def checksum_line(value: str) -> str:
    """Format the checksum line (without trailing newline)."""
    return f"{CHECKSUM_PREFIX} {value}"


def verify_checksum(text: str) -> bool:
    """
    Check that a filter's checksum line matches its content.

    The checksum line and its newline are removed and the checksum of the
    remaining text is compared to the recorded value.

    Args:
        text: Complete filter text

    Returns:
        True if the checksum line exists and matches

    Example:
        >>> verify_checksum("||a.com^")
        False
    """
    match = CHECKSUM_LINE_PATTERN.search(text)
    if not match:
        return False
    rest = text[:match.start()] + text[match.end():]
    return checksum(rest) == match.group(1)

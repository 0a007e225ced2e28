#!/usr/bin/env python3
"""
linter.py - Source Rule Linting

Reports problems in source rule files before they are published. The linter
never rewrites anything: rules are published verbatim, so fixing them is
left to the list maintainer.

Usage:
    python -m scripts.linter [src_dir]

Reported Issues:
    duplicate            Exact repeat of an earlier rule in the same file
    redundant_subdomain  ||sub.example.com^ while ||example.com^ already
                         blocks it (modifiers permitting)
    trailing_whitespace  Rule has trailing spaces or tabs
    malformed_abp        Rule starts with || but has no domain

Subdomain Redundancy:
    Parents are found with the public suffix list, so the walk stops at the
    registered domain (example.co.uk, never co.uk). A parent rule only
    makes a child redundant if its modifiers cover the child:

    - $badfilter parent       → never covers (it disables rules)
    - $important child        → only covered by an $important parent
    - $dnsrewrite/$denyallow  → never redundant
    - $dnstype parent         → only blocks some record types
    - $domain/$client/$ctag   → restricted parent can't cover unrestricted child
"""

from __future__ import annotations

import re
import sys
from functools import lru_cache
from typing import Final, Iterable, NamedTuple

import tldextract

from scripts.store import DirectorySourceStore, Source

# Bundled suffix list only, no network lookups
_tld_extract = tldextract.TLDExtract(suffix_list_urls=())


# =============================================================================
# REGEX PATTERNS
# =============================================================================

#: ABP domain rule: ||domain^ or @@||domain^, optional $modifiers
ABP_DOMAIN_PATTERN: Final[re.Pattern[str]] = re.compile(
    r"^(@@)?\|\|"              # || or @@||
    r"([^^\$|*/\s]+)"          # Domain (anything except ^$|*/ or whitespace)
    r"\^"                      # Separator
    r"(?:\$(.*))?$"            # Optional modifiers
)

#: Cosmetic/element-hiding rules: ## #@# #?# #$# #%# etc.
COSMETIC_PATTERN: Final[re.Pattern[str]] = re.compile(r"#[@$?%]*#|#[@$?%]*\?#")

#: Comment lines: "! ..." or "# ..." (not ## cosmetic rules)
COMMENT_PATTERN: Final[re.Pattern[str]] = re.compile(r"^\s*(?:!|#(?:\s|$))")

#: || rule with nothing before the separator
MALFORMED_ABP_PATTERN: Final[re.Pattern[str]] = re.compile(r"^(@@)?\|\|(?:[\^$]|$)")

#: Modifiers that stop a parent rule from covering a child
RESTRICTING_MODIFIERS: Final[frozenset[str]] = frozenset({"domain", "client", "ctag"})
SPECIAL_MODIFIERS: Final[frozenset[str]] = frozenset({"badfilter", "dnsrewrite", "denyallow"})


# =============================================================================
# DATA STRUCTURES
# =============================================================================

class LintIssue(NamedTuple):
    """
    A single lint finding.

    Attributes:
        line: 1-based line number in the source file
        code: Issue code (duplicate, redundant_subdomain, ...)
        rule: The offending rule text
        detail: Human-readable explanation
    """
    line: int
    code: str
    rule: str
    detail: str = ""


# =============================================================================
# HELPERS
# =============================================================================

def normalize_domain(domain: str) -> str:
    """Normalize domain to lowercase, stripped."""
    return domain.lower().strip().rstrip(".")


def extract_abp_info(rule: str) -> tuple[str | None, frozenset[str], bool]:
    """
    Extract domain, modifier names and exception status from an ABP rule.

    Example:
        >>> extract_abp_info("||Ads.Example.com^$important")
        ('ads.example.com', frozenset({'important'}), False)
    """
    match = ABP_DOMAIN_PATTERN.match(rule)
    if not match:
        return None, frozenset(), False

    modifiers = set()
    for mod in (match.group(3) or "").split(","):
        name = mod.split("=")[0].strip().lower().lstrip("~")
        if name:
            modifiers.add(name)

    return normalize_domain(match.group(2)), frozenset(modifiers), match.group(1) is not None


@lru_cache(maxsize=65536)
def walk_parent_domains(domain: str) -> tuple[str, ...]:
    """
    Parent domains from most to least specific, stopping at the
    registered domain.

    Example:
        >>> walk_parent_domains("a.b.example.co.uk")
        ('b.example.co.uk', 'example.co.uk')
    """
    ext = _tld_extract(domain)
    if not ext.suffix or not ext.domain or not ext.subdomain:
        return ()

    registered = f"{ext.domain}.{ext.suffix}"
    parts = ext.subdomain.split(".")
    return tuple(
        ".".join(parts[i:] + [registered]) if i < len(parts) else registered
        for i in range(1, len(parts) + 1)
    )


def parent_covers(child_mods: frozenset[str], parent_mods: frozenset[str]) -> bool:
    """Check if a parent rule with `parent_mods` blocks everything the child does."""
    if "badfilter" in parent_mods:
        return False
    if "important" in child_mods and "important" not in parent_mods:
        return False
    if child_mods & SPECIAL_MODIFIERS:
        return False
    if "dnstype" in parent_mods:
        return False
    if (parent_mods & RESTRICTING_MODIFIERS) and not (child_mods & RESTRICTING_MODIFIERS):
        return False
    return True


# =============================================================================
# LINTING
# =============================================================================

def lint_rules(text: str) -> list[LintIssue]:
    """
    Lint the rules of one source file.

    Args:
        text: Raw source file content

    Returns:
        Issues ordered by line number
    """
    issues: list[LintIssue] = []
    seen: set[str] = set()

    # Blocking rules by domain: domain -> modifiers (first occurrence wins)
    blocking: dict[str, frozenset[str]] = {}
    candidates: list[tuple[int, str, str, frozenset[str]]] = []

    for number, raw in enumerate(text.split("\n"), start=1):
        line = raw.rstrip("\r")
        rule = line.strip()
        if not rule or COMMENT_PATTERN.match(rule):
            continue

        if line != line.rstrip():
            issues.append(LintIssue(number, "trailing_whitespace", rule))

        if rule in seen:
            issues.append(LintIssue(number, "duplicate", rule))
            continue
        seen.add(rule)

        if COSMETIC_PATTERN.search(rule):
            continue

        if rule.startswith("||") or rule.startswith("@@||"):
            domain, modifiers, is_exception = extract_abp_info(rule)
            if domain is None:
                if MALFORMED_ABP_PATTERN.match(rule):
                    issues.append(LintIssue(number, "malformed_abp", rule, "no domain"))
                continue
            if is_exception:
                continue
            blocking.setdefault(domain, modifiers)
            candidates.append((number, rule, domain, modifiers))

    for number, rule, domain, modifiers in candidates:
        for parent in walk_parent_domains(domain):
            if parent in blocking and parent_covers(modifiers, blocking[parent]):
                issues.append(LintIssue(
                    number, "redundant_subdomain", rule, f"already blocked by ||{parent}^",
                ))
                break

    issues.sort(key=lambda issue: issue.line)
    return issues


def lint_sources(sources: Iterable[Source]) -> dict[str, list[LintIssue]]:
    """Lint every source. Only sources with issues appear in the result."""
    report: dict[str, list[LintIssue]] = {}
    for source in sources:
        issues = lint_rules(source.text)
        if issues:
            report[source.name] = issues
    return report


def print_report(report: dict[str, list[LintIssue]]) -> None:
    """Print lint findings grouped by file."""
    for name, issues in report.items():
        print(f"⚠️  {name}.txt: {len(issues)} issue(s)")
        for issue in issues:
            detail = f" ({issue.detail})" if issue.detail else ""
            print(f"   L{issue.line} {issue.code}: {issue.rule}{detail}")


# =============================================================================
# CLI INTERFACE
# =============================================================================

if __name__ == "__main__":
    src_dir = sys.argv[1] if len(sys.argv) > 1 else "src"

    lint_report = lint_sources(DirectorySourceStore(src_dir))
    print_report(lint_report)

    total = sum(len(issues) for issues in lint_report.values())
    print(f"Lint: {total} issue(s) in {len(lint_report)} file(s)")
    sys.exit(1 if total else 0)

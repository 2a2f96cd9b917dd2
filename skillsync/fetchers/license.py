"""SPDX detection for repository license files."""

from __future__ import annotations

import re

UNKNOWN_LICENSE = "Unknown"
SCAN_LIMIT = 2000

LICENSE_FILE_NAMES = (
    "LICENSE",
    "LICENSE.md",
    "LICENSE.txt",
    "COPYING",
    "COPYING.md",
    "COPYING.txt",
    "LICENSE.rst",
    "LICENCE",
    "LICENCE.md",
)

# Checked in order; the first match wins.
LICENSE_PATTERNS: tuple[tuple[str, re.Pattern[str]], ...] = tuple(
    (spdx_id, re.compile(pattern, re.IGNORECASE))
    for spdx_id, pattern in (
        ("Unlicense", r"unlicense|This is free and unencumbered"),
        ("CC0-1.0", r"Creative\s+Commons.*Zero|CC0"),
        ("MIT", r"MIT\s+License|Permission is hereby granted, free of charge"),
        ("Apache-2.0", r"Apache\s+License.*2\.0|Licensed under the Apache License"),
        ("GPL-3.0", r"GNU\s+General\s+Public\s+License.*version\s+3|GPL-3\.0|GPLv3"),
        ("GPL-2.0", r"GNU\s+General\s+Public\s+License.*version\s+2|GPL-2\.0|GPLv2"),
        ("AGPL-3.0", r"GNU\s+Affero.*License.*version\s+3|AGPL-3\.0|AGPLv3"),
        ("LGPL-3.0", r"GNU\s+Lesser.*License.*version\s+3|LGPL-3\.0|LGPLv3"),
        ("LGPL-2.1", r"GNU\s+Lesser.*License.*version\s+2\.1|LGPL-2\.1|LGPLv2\.1"),
        ("BSD-3-Clause", r"three\s+clauses|BSD.*3.*Clause|New BSD|Modified BSD"),
        ("BSD-2-Clause", r"two\s+clauses|BSD.*2.*Clause|Simplified BSD"),
        ("EPL-2.0", r"Eclipse\s+Public\s+License.*2\.0|EPL-2\.0"),
        ("EPL-1.0", r"Eclipse\s+Public\s+License.*1\.0|EPL-1\.0"),
        ("MPL-2.0", r"Mozilla\s+Public\s+License.*2\.0|MPL-2\.0|MPL\s+2"),
        ("ISC", r"ISC\s+License|Permission to use, copy, modify.*ISC"),
        ("Zlib", r"zlib\s+License"),
    )
)


def detect_license_type(content: str) -> str:
    """Return the SPDX id matching license text, or ``Unknown``."""
    if not content:
        return UNKNOWN_LICENSE
    head = content[:SCAN_LIMIT]
    for spdx_id, pattern in LICENSE_PATTERNS:
        if pattern.search(head):
            return spdx_id

    lowered = head.lower()
    if "or any later" in lowered or "or (at your option) any later" in lowered:
        if "version 2" in lowered:
            return "GPL-2.0+"
        if "version 3" in lowered:
            return "GPL-3.0+"
    return UNKNOWN_LICENSE


def license_urls(owner: str, repo: str, branch: str, file_name: str) -> tuple[str, str]:
    """Browser and raw URLs for a license file on GitHub."""
    branch = branch or "main"
    return (
        f"https://github.com/{owner}/{repo}/blob/{branch}/{file_name}",
        f"https://raw.githubusercontent.com/{owner}/{repo}/{branch}/{file_name}",
    )

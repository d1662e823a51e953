from __future__ import annotations

import json
from pathlib import Path
from typing import Any


def safe_append_ledger_entry(path: Path, entry: dict[str, Any]) -> None:
    """Append a single JSON line to the run ledger file.

    This is best-effort: a run should not fail if the ledger cannot be written.
    """

    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        payload = json.dumps(entry, ensure_ascii=False, separators=(",", ":"), default=str)
        with path.open("a", encoding="utf-8") as f:
            f.write(payload + "\n")
    except OSError:
        return


def read_ledger_entries(path: Path) -> list[dict[str, Any]]:
    """Return all valid JSON object lines from a ledger, skipping corrupt ones."""

    if not path.exists():
        return []
    entries: list[dict[str, Any]] = []
    for line in path.read_text(encoding="utf-8", errors="ignore").splitlines():
        line = line.strip()
        if not line:
            continue
        try:
            parsed = json.loads(line)
        except json.JSONDecodeError:
            continue
        if isinstance(parsed, dict):
            entries.append(parsed)
    return entries

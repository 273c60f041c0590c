# processing/promise_ledger.py
"""Track checklist promises across acts in long mode."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

import structlog

from utils.text_processing import split_paragraphs

logger = structlog.get_logger(__name__)

CONTEXT_PARAGRAPHS = 7
CONTEXT_CHARS = 1500


@dataclass
class PromiseLedgerEntry:
    text: str
    act: int
    resolved: bool = False


@dataclass
class PromiseLedger:
    """Promises raised by planning calls and the acts that introduced them.

    Resolution matching is approximate: a self-reported resolution line
    ``"item: status"`` resolves the first entry whose text contains the item
    or is contained by it, ignoring case, when the status mentions
    ``resolved``.
    """

    entries: list[PromiseLedgerEntry] = field(default_factory=list)

    def add_promises(self, items: list[str], act: int) -> None:
        for item in items:
            self.entries.append(PromiseLedgerEntry(text=item, act=act))
        logger.debug("Promises recorded", act=act, added=len(items), total=len(self.entries))

    def update_resolutions(self, items: list[str]) -> int:
        """Apply resolution lines and return how many entries flipped."""
        flipped = 0
        for line in items:
            parts = line.split(":")
            if len(parts) < 2:
                continue
            key = parts[0].strip().lower()
            status = parts[1].strip().lower()
            match = next(
                (
                    e
                    for e in self.entries
                    if key in e.text.lower() or e.text.lower() in key
                ),
                None,
            )
            if match and "resolved" in status and not match.resolved:
                match.resolved = True
                flipped += 1
        return flipped

    def unresolved(self) -> list[PromiseLedgerEntry]:
        return [e for e in self.entries if not e.resolved]

    def context_summary(self, previous_act_text: str) -> str:
        """Ending of the previous act plus the open promises, for the next act's prompt."""
        paragraphs = split_paragraphs(previous_act_text)
        ending = "\n\n".join(paragraphs[-CONTEXT_PARAGRAPHS:])[:CONTEXT_CHARS]
        open_items = "\n".join(f"- {e.text}" for e in self.unresolved())
        return (
            f"PREVIOUS ACT ENDING:\n{ending}...\n\n"
            f"UNRESOLVED PLOT ELEMENTS:\n{open_items or '(none)'}"
        )

    def summary(self) -> dict[str, Any]:
        total = len(self.entries)
        resolved = sum(1 for e in self.entries if e.resolved)
        open_items = [e.text for e in self.unresolved()]
        return {
            "total": total,
            "resolved": resolved,
            "unresolved_count": len(open_items),
            "unresolved_items": open_items,
            "resolution_rate": resolved / total * 100 if total else 100.0,
        }

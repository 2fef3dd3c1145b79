"""
File-based memory store.

Two files under {workspace}/memory/:

1. MEMORY.md: long-term facts, rewritten on consolidation
2. HISTORY.md: append-only log of consolidated conversation summaries
"""

from pathlib import Path


class MemoryStore:
    """Long-term memory plus a grep-able history log."""

    def __init__(self, workspace: Path):
        self.workspace = Path(workspace)
        self.memory_dir = self.workspace / "memory"
        self.memory_dir.mkdir(parents=True, exist_ok=True)

        self.long_term_path = self.memory_dir / "MEMORY.md"
        self.history_path = self.memory_dir / "HISTORY.md"

    def read_long_term(self) -> str:
        """Read long-term memory file. Returns empty string if not exists."""
        if self.long_term_path.exists():
            return self.long_term_path.read_text(encoding="utf-8")
        return ""

    def write_long_term(self, content: str) -> None:
        self.long_term_path.write_text(content, encoding="utf-8")

    def append_history(self, entry: str) -> None:
        """Append one entry, separated from the next by a blank line."""
        with open(self.history_path, "a", encoding="utf-8") as f:
            f.write(entry.rstrip() + "\n\n")

    def read_history(self) -> str:
        if self.history_path.exists():
            return self.history_path.read_text(encoding="utf-8")
        return ""

    def get_memory_context(self) -> str:
        """
        Build memory context for the system prompt.

        Returns an empty string when there is no long-term memory yet.
        """
        long_term = self.read_long_term()
        if not long_term.strip():
            return ""
        return f"## Long-term Memory\n{long_term}"

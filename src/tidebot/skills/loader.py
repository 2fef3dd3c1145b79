"""
Skill discovery and loading.

A skill is a directory containing SKILL.md. Workspace skills
({workspace}/skills/<name>/SKILL.md) shadow builtin skills of the same name.

SKILL.md may start with a YAML frontmatter block:

    ---
    description: >
      Check the weather
    always: true
    metadata:
      requires: {bins: [curl], env: [WEATHER_KEY]}
    ---

`metadata` may also be a JSON string, as older skills write it.
"""

import logging
import os
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml

logger = logging.getLogger(__name__)


@dataclass
class SkillInfo:
    name: str
    path: Path
    source: str  # "workspace" or "builtin"


def split_frontmatter(content: str) -> tuple[dict[str, Any], str]:
    """Split SKILL.md into its frontmatter mapping and its body."""
    lines = content.splitlines()
    if not lines or lines[0].strip() != "---":
        return {}, content

    header, body = lines[1:], ""
    for idx, line in enumerate(lines[1:], start=1):
        if line.strip() == "---":
            header, body = lines[1:idx], "\n".join(lines[idx + 1 :]).strip()
            break

    try:
        meta = yaml.safe_load("\n".join(header))
    except yaml.YAMLError as e:
        logger.warning("Ignoring invalid skill frontmatter: %s", e)
        return {}, body
    return (meta if isinstance(meta, dict) else {}), body


def _parse_metadata(raw: Any) -> dict[str, Any]:
    if isinstance(raw, str):
        try:
            raw = yaml.safe_load(raw)
        except yaml.YAMLError as e:
            logger.warning("Ignoring invalid skill metadata: %s", e)
            return {}
    if not isinstance(raw, dict):
        return {}
    # Accept both {"requires": ...} and {"tidebot": {"requires": ...}}
    nested = raw.get("tidebot")
    return nested if isinstance(nested, dict) else raw


def _escape_xml(s: str) -> str:
    return s.replace("&", "&amp;").replace("<", "&lt;").replace(">", "&gt;")


class SkillsLoader:
    """Finds skills on disk and renders them for the system prompt."""

    def __init__(self, workspace: Path, builtin_dir: Path | None = None):
        self.workspace_skills = Path(workspace) / "skills"
        self.builtin_skills = builtin_dir

    def list_skills(self, filter_unavailable: bool = False) -> list[SkillInfo]:
        skills: list[SkillInfo] = []
        seen: set[str] = set()
        for source, directory in (
            ("workspace", self.workspace_skills),
            ("builtin", self.builtin_skills),
        ):
            if directory is None or not directory.is_dir():
                continue
            for entry in sorted(directory.iterdir()):
                skill_file = entry / "SKILL.md"
                if entry.name in seen or not skill_file.is_file():
                    continue
                seen.add(entry.name)
                skills.append(SkillInfo(name=entry.name, path=skill_file, source=source))

        if filter_unavailable:
            skills = [s for s in skills if self._check_requirements(self._requirements(s.name))]
        return skills

    def load_skill(self, name: str) -> str | None:
        for directory in (self.workspace_skills, self.builtin_skills):
            if directory is None:
                continue
            path = directory / name / "SKILL.md"
            if path.is_file():
                return path.read_text(encoding="utf-8")
        return None

    def get_skill_metadata(self, name: str) -> dict[str, Any]:
        content = self.load_skill(name)
        return split_frontmatter(content)[0] if content else {}

    def load_skills_for_context(self, names: list[str]) -> str:
        """Full skill bodies (frontmatter removed) for the named skills."""
        parts = []
        for name in names:
            content = self.load_skill(name)
            if content:
                parts.append(f"### Skill: {name}\n\n{split_frontmatter(content)[1]}")
        return "\n\n---\n\n".join(parts)

    def get_always_skills(self) -> list[str]:
        always = []
        for skill in self.list_skills(filter_unavailable=True):
            meta = self.get_skill_metadata(skill.name)
            parsed = _parse_metadata(meta.get("metadata"))
            if str(meta.get("always", "")).lower() == "true" or parsed.get("always") is True:
                always.append(skill.name)
        return always

    def build_skills_summary(self, exclude: list[str] | None = None) -> str:
        """XML-ish directory of skills the model can read on demand."""
        excluded = set(exclude or [])
        skills = [s for s in self.list_skills() if s.name not in excluded]
        if not skills:
            return ""

        lines = ["<skills>"]
        for skill in skills:
            meta = self.get_skill_metadata(skill.name)
            requires = self._requirements(skill.name)
            available = self._check_requirements(requires)
            description = str(meta.get("description") or skill.name).strip()
            lines.append(f'  <skill available="{str(available).lower()}">')
            lines.append(f"    <name>{_escape_xml(skill.name)}</name>")
            lines.append(f"    <description>{_escape_xml(description)}</description>")
            lines.append(f"    <location>{_escape_xml(str(skill.path))}</location>")
            if not available:
                missing = self._missing_requirements(requires)
                if missing:
                    lines.append(f"    <requires>{_escape_xml(missing)}</requires>")
            lines.append("  </skill>")
        lines.append("</skills>")
        return "\n".join(lines)

    def _requirements(self, name: str) -> dict[str, Any]:
        meta = self.get_skill_metadata(name)
        requires = _parse_metadata(meta.get("metadata")).get("requires")
        return requires if isinstance(requires, dict) else {}

    @staticmethod
    def _check_requirements(requires: dict[str, Any]) -> bool:
        return not SkillsLoader._missing_requirements(requires)

    @staticmethod
    def _missing_requirements(requires: dict[str, Any]) -> str:
        missing = []
        for binary in requires.get("bins") or []:
            if not shutil.which(str(binary)):
                missing.append(f"CLI: {binary}")
        for env in requires.get("env") or []:
            if not os.environ.get(str(env)):
                missing.append(f"ENV: {env}")
        return ", ".join(missing)

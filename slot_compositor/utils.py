"""Run reports shared by the CLI commands."""
from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path

from loguru import logger


@dataclass
class PipelineReport:
    path: Path
    data: dict

    def update(self, section: str, payload: dict) -> None:
        self.data[section] = payload
        self.write()

    def write(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps(self.data, indent=2))
        write_report_md(self.path.with_suffix(".md"), self.data)


def load_report(base_dir: Path) -> PipelineReport:
    json_path = base_dir / "report.json"
    data: dict = {}
    if json_path.exists():
        try:
            data = json.loads(json_path.read_text())
        except json.JSONDecodeError as exc:
            logger.warning("Ignoring unreadable report {}: {}", json_path, exc)
    return PipelineReport(path=json_path, data=data)


def write_report_md(path: Path, data: dict) -> None:
    lines = ["# Composite Report", ""]
    if not data:
        lines.append("No composites recorded yet.")
    else:
        for section, payload in data.items():
            lines.append(f"## {section.title()}")
            for key, value in payload.items():
                lines.append(f"- **{key.replace('_', ' ').title()}**: {value}")
            lines.append("")
    path.write_text("\n".join(lines))

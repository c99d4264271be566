from __future__ import annotations

import asyncio
import json
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Sequence

from loguru import logger

from researchloop.config import settings
from researchloop.models.research import (
    AnalysisResult,
    ScreenshotRef,
    SearchResult,
    SearchRound,
)
from researchloop.services.artifact_store import format_bytes
from researchloop.tools.web_utils import source_type

_UNSAFE_FILENAME_CHARS = re.compile(r"[^A-Za-z0-9\u4e00-\u9fa5]")
MAX_TOPIC_SLUG_BYTES = 100

TABLE_OF_CONTENTS = [
    ("Executive summary", "executive-summary"),
    ("Search rounds", "search-rounds"),
    ("Key findings", "key-findings"),
    ("Detailed analysis", "detailed-analysis"),
    ("Screenshots", "screenshots"),
    ("Sources", "sources"),
]


@dataclass(frozen=True)
class MarkdownReport:
    filename: str
    path: str
    size: int
    content: str
    generated_at: datetime


def report_filename(topic: str, timestamp: datetime) -> str:
    clean_topic = _UNSAFE_FILENAME_CHARS.sub("-", topic)
    # Bounded in bytes, CJK characters take three each
    slug = clean_topic.encode("utf-8")[:MAX_TOPIC_SLUG_BYTES]
    clean_topic = slug.decode("utf-8", errors="ignore")
    return f"{clean_topic}-{timestamp:%Y-%m-%d}-{timestamp:%H-%M-%S}.md"


class MarkdownReportRenderer:
    """Builds the Markdown research report and writes it to disk."""

    def __init__(self, output_dir: str | None = None):
        self.output_dir = Path(output_dir or settings.markdown_output_dir)

    def build(
        self,
        topic: str,
        rounds: Sequence[SearchRound],
        analysis: AnalysisResult,
        screenshots: Sequence[ScreenshotRef],
        *,
        results: Sequence[SearchResult] = (),
        timestamp: datetime | None = None,
        include_raw_data: bool = False,
    ) -> str:
        timestamp = timestamp or datetime.now(timezone.utc)
        sections = [
            self._header(topic, timestamp),
            self._executive_summary(analysis),
        ]
        if rounds:
            sections.append(self._rounds_overview(rounds))
        sections.append(self._key_findings(analysis))
        sections.append(self._detailed_analysis(analysis))
        if screenshots:
            sections.append(self._screenshots(screenshots))
        sections.append(self._sources(results, analysis))
        if include_raw_data:
            sections.append(self._raw_data(results, analysis))
        sections.append(self._footer(timestamp))
        return "".join(sections)

    async def render(
        self,
        topic: str,
        rounds: Sequence[SearchRound],
        analysis: AnalysisResult,
        screenshots: Sequence[ScreenshotRef],
        *,
        results: Sequence[SearchResult] = (),
        timestamp: datetime | None = None,
        include_raw_data: bool = False,
    ) -> MarkdownReport:
        timestamp = timestamp or datetime.now(timezone.utc)
        content = self.build(
            topic,
            rounds,
            analysis,
            screenshots,
            results=results,
            timestamp=timestamp,
            include_raw_data=include_raw_data,
        )
        filename = report_filename(topic, timestamp)
        path = self.output_dir / filename
        await asyncio.to_thread(self._write, path, content)
        logger.info(f"Markdown report generated: {path}")
        return MarkdownReport(
            filename=filename,
            path=str(path),
            size=len(content.encode("utf-8")),
            content=content,
            generated_at=timestamp,
        )

    @staticmethod
    def _write(path: Path, content: str) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content, encoding="utf-8")

    @staticmethod
    def _header(topic: str, timestamp: datetime) -> str:
        toc = "\n".join(
            f"{i}. [{title}](#{anchor})" for i, (title, anchor) in enumerate(TABLE_OF_CONTENTS, 1)
        )
        return (
            f"# {topic} - Research report\n\n"
            f"**Generated**: {timestamp:%Y-%m-%d %H:%M:%S %Z}  \n"
            "**Report type**: multi-round web research  \n"
            "**Data sources**: web search + Wikipedia + model analysis  \n\n"
            "---\n\n"
            "## Contents\n\n"
            f"{toc}\n\n---\n\n"
        )

    @staticmethod
    def _executive_summary(analysis: AnalysisResult) -> str:
        summary = analysis.summary or "No summary available."
        return (
            "## Executive summary\n\n"
            f"{summary}\n\n"
            f"**Confidence**: {round(analysis.confidence * 100)}%\n\n---\n\n"
        )

    @staticmethod
    def _rounds_overview(rounds: Sequence[SearchRound]) -> str:
        lines = [
            "## Search rounds\n",
            f"This research ran **{len(rounds)}** search round(s), each one narrowing the topic:\n",
        ]
        for search_round in rounds:
            lines.append(
                f"### Round {search_round.round_number}\n"
                f"- **Query**: {search_round.query}\n"
                f"- **Results**: {len(search_round.results)}\n"
                f"- **Key findings**: {search_round.key_findings or 'Not analyzed'}\n"
                f"- **Next direction**: {search_round.next_query or 'Complete'}\n"
            )
        lines.append("---\n\n")
        return "\n".join(lines)

    @staticmethod
    def _key_findings(analysis: AnalysisResult) -> str:
        content = "## Key findings\n\n"
        if analysis.key_points:
            content += "".join(
                f"{i}. **{point}**\n" for i, point in enumerate(analysis.key_points, 1)
            )
        else:
            content += "No key findings available.\n"
        return content + "\n---\n\n"

    @staticmethod
    def _detailed_analysis(analysis: AnalysisResult) -> str:
        content = "## Detailed analysis\n\n"
        if not analysis.categories:
            return content + "No detailed analysis available.\n\n---\n\n"
        for category in analysis.categories:
            content += f"### {category.name}\n\n"
            content += "".join(f"- {point}\n" for point in category.points)
            content += "\n"
        return content + "---\n\n"

    @staticmethod
    def _screenshots(screenshots: Sequence[ScreenshotRef]) -> str:
        content = "## Screenshots\n\nScreenshots of the most relevant pages:\n\n"
        for i, shot in enumerate(screenshots, 1):
            label = shot.title or shot.source_url
            content += (
                f"### Screenshot {i}: {label}\n\n"
                f"![{shot.title or 'Screenshot'}]({shot.image_locator})\n\n"
                f"- **URL**: [{shot.source_url}]({shot.source_url})\n"
                f"- **Captured**: {shot.captured_at:%Y-%m-%d %H:%M:%S}\n"
                f"- **File size**: {format_bytes(shot.byte_size)}\n"
                f"- **Resolution**: {shot.width}x{shot.height}\n\n"
            )
        return content + "---\n\n"

    @staticmethod
    def _sources(results: Sequence[SearchResult], analysis: AnalysisResult) -> str:
        content = "## Sources\n\n### Cited sources\n\n"
        for i, source in enumerate(analysis.sources, 1):
            content += (
                f"{i}. **[{source.title or source.url}]({source.url})**  \n"
                f"   Reliability: {round(source.reliability * 100)}%  \n"
                f"   Type: {source_type(source.url)}\n\n"
            )
        content += "\n### All search results\n\n"
        for i, result in enumerate(results, 1):
            content += (
                f"{i}. **[{result.title}]({result.url})**  \n"
                f"   Source: {result.source.value}  \n"
                f"   Snippet: {result.snippet or 'No snippet'}\n\n"
            )
        return content + "---\n\n"

    @staticmethod
    def _raw_data(results: Sequence[SearchResult], analysis: AnalysisResult) -> str:
        raw_results = json.dumps([r.to_dict() for r in results], ensure_ascii=False, indent=2)
        raw_analysis = json.dumps(analysis.to_dict(), ensure_ascii=False, indent=2)
        return (
            "## Raw data\n\n"
            "<details>\n<summary>Search results</summary>\n\n"
            f"```json\n{raw_results}\n```\n\n</details>\n\n"
            "<details>\n<summary>Analysis</summary>\n\n"
            f"```json\n{raw_analysis}\n```\n\n</details>\n\n---\n\n"
        )

    @staticmethod
    def _footer(timestamp: datetime) -> str:
        return (
            "## About this report\n\n"
            f"- **Generated**: {timestamp.isoformat()}\n"
            "- **Format**: Markdown\n"
            "- **Method**: multi-round search, model analysis, page screenshots\n\n"
            "> This report was generated automatically. Verify important facts "
            "against authoritative sources.\n\n---\n\n*End of report*\n"
        )

"""researchloop - multi-round web research

Simple CLI for running one research job inline.
"""

import argparse
import asyncio
from pathlib import Path

from researchloop.config import settings
from researchloop.models.research import EmptyRoundPolicy, JobOptions, JobStatus
from researchloop.services.job_service import build_services
from researchloop.services.logger import configure_logging

TEMPLATES = ("modern", "classic", "minimal", "academic", "presentation")


async def run_research(topic: str, options: JobOptions, output: str | None = None) -> int:
    """Run one job to completion and print its outcome."""
    print(f"Research topic: {topic}")
    print("-" * 50)

    services = build_services()
    try:
        result = await services.job.run(topic, options)
    finally:
        await services.job_store.close()

    for search_round in result.rounds:
        print(f"\n[*] Round {search_round.round_number}: {search_round.query}")
        print(f"    Results: {len(search_round.results)}  Screenshots: {len(search_round.screenshots)}")
        print(f"    Findings: {search_round.key_findings[:200]}")
        if search_round.next_query:
            print(f"    Next: {search_round.next_query}")

    if result.status != JobStatus.COMPLETED:
        message = result.error.message if result.error else "Unknown error"
        print(f"\n[!] Research failed: {message}")
        return 1

    print("\n[*] Research Complete!")
    print(f"   Job: {result.job_id}")
    print(f"   Runtime: {result.processing_time_ms}ms")
    if result.analysis:
        print(f"   Confidence: {result.analysis.confidence:.0%}")
    if result.markdown_path:
        print(f"   Markdown: {result.markdown_path}")

    if output:
        path = Path(output)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(result.rendered_document or "", encoding="utf-8")
        print(f"   HTML: {path}")
    return 0


def main():
    parser = argparse.ArgumentParser(description="researchloop multi-round research")
    parser.add_argument("--topic", "-t", required=True, help="Research topic")
    parser.add_argument("--rounds", "-r", type=int, default=settings.default_max_rounds)
    parser.add_argument(
        "--results", type=int, default=settings.default_max_results_per_round,
        help="Results kept per round",
    )
    parser.add_argument("--template", choices=TEMPLATES, default=settings.default_template)
    parser.add_argument("--language", choices=("en", "zh", "auto"), default=settings.default_language)
    parser.add_argument("--no-screenshots", action="store_true")
    parser.add_argument("--no-markdown", action="store_true")
    parser.add_argument("--no-enhance", action="store_true", help="Skip fetching full page content")
    parser.add_argument(
        "--stop-on-empty", action="store_true", help="Stop when a round returns no results"
    )
    parser.add_argument("--output", "-o", help="Write the HTML report to this path")

    args = parser.parse_args()
    if len(args.topic.strip()) < 2:
        parser.error("topic must be at least 2 characters")

    configure_logging()
    options = JobOptions(
        max_rounds=max(args.rounds, 1),
        max_results_per_round=max(args.results, 1),
        include_screenshots=not args.no_screenshots,
        generate_markdown=not args.no_markdown,
        enhance_content=not args.no_enhance,
        language=args.language,
        template=args.template,
        empty_round_policy=EmptyRoundPolicy.STOP if args.stop_on_empty else EmptyRoundPolicy.CONTINUE,
    )
    raise SystemExit(asyncio.run(run_research(args.topic.strip(), options, args.output)))


if __name__ == "__main__":
    main()

#!/usr/bin/env python3
"""
Keyword Scan Runner

Scans keywords for a domain across organic results, AI Overview and AI Mode,
prints live batch progress and a result table.

Usage:
    # Set environment variables first (or put them in .env):
    export SERPAPI_KEY=your_key
    export ANTHROPIC_API_KEY=your_key   # optional, enables analysis

    # Scan keywords:
    python scripts/run_scan.py hypefresh.co "sneaker news" "streetwear brands"

    # With options:
    python scripts/run_scan.py hypefresh.co "sneaker news" \
        --location "United Kingdom" \
        --window 2 \
        --no-analysis
"""

import asyncio
import argparse
import logging
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from dotenv import load_dotenv

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logging.getLogger("httpx").setLevel(logging.WARNING)
logging.getLogger("httpcore").setLevel(logging.WARNING)
logger = logging.getLogger(__name__)


def print_progress(progress):
    print(f"  [{progress.completed}/{progress.total}] {progress.percent}% scanned")


def print_table(rows):
    header = f"{'Keyword':<32} {'Status':<12} {'Organic':>7} {'AI Overview':>12} {'AI Mode':<10} {'Sentiment':<14}"
    print(header)
    print("-" * len(header))
    for row in rows:
        organic = row["organic_rank"] or "-"
        overview = f"#{row['ai_overview_position']}" if row["ai_overview_cited"] else "-"
        print(
            f"{row['keyword'][:32]:<32} {row['display_status']:<12} {organic:>7} "
            f"{overview:>12} {row['ai_mode']:<10} {row['sentiment']:<14}"
        )


async def run_scan(
    domain: str,
    terms: list,
    location: str = None,
    window: int = None,
    analysis: bool = True,
):
    """Scan keywords for a domain and print results."""

    load_dotenv()

    from citewatch.models import Keyword
    from citewatch.output.display import merge_display_rows, summarize
    from citewatch.services.tracking import build_tracking_service
    from citewatch.utils.config import get_settings
    from citewatch.utils.domain_match import normalize_domain

    settings = get_settings()
    if not settings.SERPAPI_KEY:
        print("ERROR: Missing required environment variable SERPAPI_KEY")
        return 1

    domain = normalize_domain(domain)
    service = build_tracking_service(settings)

    project = service.keywords.get_or_create_project(domain)
    existing = {k.term.lower(): k for k in service.keywords.list_keywords(project.id)}
    keywords = []
    for term in terms:
        keyword = existing.get(term.strip().lower())
        if keyword is None:
            keyword = service.keywords.add_keyword(project.id, term, location)
            existing[keyword.term.lower()] = keyword
        if location:
            keyword = Keyword(id=keyword.id, term=keyword.term, locale=location, project_id=project.id)
        keywords.append(keyword)

    print(f"\n{'='*70}")
    print(f"CITEWATCH - SCAN")
    print(f"{'='*70}")
    print(f"Domain:       {domain}")
    print(f"Keywords:     {len(keywords)}")
    print(f"Location:     {location or settings.DEFAULT_LOCATION}")
    print(f"Window:       {window or settings.SCAN_CONCURRENCY}")
    print(f"Analysis:     {'on' if analysis and service.enricher else 'off'}")
    print(f"{'='*70}\n")

    try:
        batch = await service.scan_batch(
            keywords,
            domain,
            window=window,
            on_progress=print_progress,
            enrich=analysis,
        )

        if analysis and service.enricher is not None:
            print("\nWaiting for analysis...")
            await service.enricher.drain()

        stored = service.store.latest_for_keywords([k.id for k in keywords], domain=domain)
        rows = merge_display_rows(keywords, live_results=batch.results, stored=stored)
        print()
        print_table(rows)

        summary = summarize(rows)
        print(f"\nAI Overview share of voice: {summary['share_of_voice_percent']}%")
        if batch.failed_ids():
            print(f"Failed keywords: {len(batch.failed_ids())}")
    finally:
        await service.close()

    return 0


def main():
    parser = argparse.ArgumentParser(description="Scan keywords for AI search visibility")
    parser.add_argument("domain", help="Domain to track (e.g. hypefresh.co)")
    parser.add_argument("keywords", nargs="+", help="Keywords to scan")
    parser.add_argument("--location", help="Search location (default from settings)")
    parser.add_argument("--window", type=int, choices=range(1, 6), help="Concurrent scans per window")
    parser.add_argument("--no-analysis", action="store_true", help="Skip Claude analysis")
    args = parser.parse_args()

    sys.exit(asyncio.run(run_scan(
        domain=args.domain,
        terms=args.keywords,
        location=args.location,
        window=args.window,
        analysis=not args.no_analysis,
    )))


if __name__ == "__main__":
    main()

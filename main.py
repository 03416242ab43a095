"""
Main Application - Drug Analysis CLI
Resolves a drug name and prints the evidence-bounded analysis
"""

import argparse
import asyncio
import json
import logging
import sys
from typing import List, Optional

from dotenv import load_dotenv

from drug_agent.config import SUPPORTED_LANGUAGES, AgentConfig
from drug_agent.errors import AnalysisAborted, ConfigurationError
from drug_agent.models import INPUT_SOURCES, AnalysisResult, InputRequest
from drug_agent.pipeline import DrugAnalysisPipeline

EXIT_OK = 0
EXIT_CONFIG = 1
EXIT_ABORTED = 2


def print_banner():
    """Print application banner"""
    print("=" * 60)
    print("💊 Drug Analysis Agent")
    print("=" * 60)


def print_overview(rows) -> None:
    print("\n📋 Workflow overview:")
    for row in rows:
        print(f"  {row.stage:<16} {row.status.value:<8} {row.message}")


def format_result(result: AnalysisResult) -> None:
    """Pretty-print an analysis result"""
    identity = result.identity
    print(f"\n🔎 Input: {result.request.raw_name}")
    print(f"🔤 Working name: {result.translated_name}")
    if identity.is_resolved:
        print(f"🧬 Identity: {identity.canonical_name} (RxCUI {identity.registry_id}, {identity.resolution_method.value})")
    else:
        print("🧬 Identity: unresolved")

    if result.label is not None:
        print(f"\n📄 Label {result.label.document_id} ({result.label.published_date}): "
              f"{len(result.label.sections)} sections")
    if result.adverse_events is not None:
        events = result.adverse_events
        print(f"\n📊 Adverse events: {events.total_reports} reports, {events.serious_rate}% serious")
        for reaction in events.top_reactions[:5]:
            print(f"  - {reaction.term}: {reaction.count} ({reaction.percentage_of_max}%)")

    if result.summary is not None:
        print(f"\n📝 Summary:\n{result.summary.overview}")
        for point in result.summary.key_points:
            print(f"  • {point}")
        if result.summary.warnings:
            print("\n⚠️  Warnings:")
            for warning in result.summary.warnings:
                print(f"  - {warning}")

    if result.sources_cited:
        print("\n📚 Sources:")
        for source in result.sources_cited:
            print(f"  - {source}")

    print(f"\n{result.disclaimer.text}")
    print_overview(result.overview)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Resolve a drug name and summarise its label and adverse-event evidence.")
    parser.add_argument("drug_name", help="Drug name, in any language")
    parser.add_argument("--language", choices=SUPPORTED_LANGUAGES, default=None, help="Output language")
    parser.add_argument("--requester-id", default=None, help="User id that owns the audit record")
    parser.add_argument("--source", choices=INPUT_SOURCES, default="text", help="Where the name came from")
    parser.add_argument("--json", action="store_true", help="Print the serialised result as JSON")
    return parser


async def run(args: argparse.Namespace, config: AgentConfig) -> int:
    try:
        pipeline = DrugAnalysisPipeline.from_config(config)
    except ConfigurationError as e:
        print(f"❌ Configuration error: {e}")
        return EXIT_CONFIG

    request = InputRequest(
        raw_name=args.drug_name,
        language=args.language or config.default_language,
        requester_id=args.requester_id,
        input_source=args.source,
    )
    try:
        result = await pipeline.analyze(request)
    except AnalysisAborted as e:
        if args.json:
            print(json.dumps(e.to_dict(), ensure_ascii=False, indent=2))
        else:
            print(f"❌ Analysis aborted at {e.stage}: {e.reason}")
            print_overview(e.overview)
        return EXIT_ABORTED

    if args.json:
        print(json.dumps(result.to_dict(), ensure_ascii=False, indent=2))
    else:
        format_result(result)
    return EXIT_OK


def main(argv: Optional[List[str]] = None) -> int:
    """Command-line entry point"""
    args = build_parser().parse_args(argv)
    load_dotenv()
    config = AgentConfig.from_env()
    logging.basicConfig(
        level=getattr(logging, config.log_level, logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    for error in config.errors:
        print(f"❌ Config error: {error}")
    for warning in config.warnings:
        print(f"⚠️  Config warning: {warning}")

    if not args.json:
        print_banner()
    return asyncio.run(run(args, config))


if __name__ == "__main__":
    sys.exit(main())

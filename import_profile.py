"""
Build or refine a DigitalMe writing-style profile from the command line.

Usage::

    # Build from adapter output (calls Claude for extraction):
    python import_profile.py build --json data/sources.json --out profile.json

    # Build from a single text file, with the deep analysis pass:
    python import_profile.py build --text essay.txt --source-type blog --advanced

    # Build from pre-extracted samples (no API calls):
    python import_profile.py build --samples data/samples.json --out profile.json

    # Refine an existing profile with a batch of new messages:
    python import_profile.py refine profile.json messages.json --out profile.json

Exit status is 1 when the operation failed and 0 on success or when a
refinement batch was too small to change anything.
"""

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import TYPE_CHECKING, List, Optional

from dotenv import load_dotenv

if TYPE_CHECKING:
    from digitalme.style.profile_agent import StyleProfileAgent

load_dotenv()

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-8s %(name)s | %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger("import_profile")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Build or refine a DigitalMe writing-style profile"
    )
    parser.add_argument(
        "--log-dir",
        metavar="DIR",
        help="Directory for structured event logs (default: settings.log_dir)",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    build = sub.add_parser("build", help="Build a profile from sources")
    inputs = build.add_mutually_exclusive_group(required=True)
    inputs.add_argument("--json", metavar="FILE", help="JSON array of source documents")
    inputs.add_argument("--text", metavar="FILE", help="Plain text file, one source")
    inputs.add_argument("--samples", metavar="FILE", help="JSON array of extracted samples")
    build.add_argument(
        "--source-type",
        default="text",
        help="Source type for --text (default: text)",
    )
    build.add_argument("--user-id", default="", help="Owner of the new profile")
    build.add_argument(
        "--advanced",
        action="store_true",
        help="Also run the advanced analysis (phrases, thought patterns, markers)",
    )
    build.add_argument("--out", metavar="FILE", help="Write the profile JSON here")

    refine = sub.add_parser("refine", help="Refine a profile with new messages")
    refine.add_argument("profile", help="Profile JSON file")
    refine.add_argument("messages", help="Messages: JSON array or blank-line separated text")
    refine.add_argument("--out", metavar="FILE", help="Write the updated profile JSON here")
    return parser


def _write_profile(profile_json: str, out: Optional[str]) -> None:
    if out:
        Path(out).write_text(profile_json + "\n", encoding="utf-8")
        logger.info("Profile written to %s", out)
    else:
        print(profile_json)


async def run_build(args: argparse.Namespace, agent: "StyleProfileAgent") -> int:
    from digitalme.models import BasicAttribute, SourceType
    from digitalme.style.source_importer import SourceImporter

    importer = SourceImporter()

    if args.samples:
        samples = await importer.load_samples(args.samples)
        result = agent.build_profile_from_samples(samples, user_id=args.user_id)
    else:
        if args.json:
            documents = await importer.import_from_json(args.json)
        else:
            documents = await importer.import_from_text(
                args.text, SourceType(args.source_type.lower())
            )
        if not documents:
            logger.error("No usable sources imported. Nothing to do.")
            return 1
        result = await agent.build_profile(
            documents, user_id=args.user_id, include_advanced=args.advanced
        )

    for source_id, assessment in result.assessments.items():
        logger.info(
            "Source %s: weight=%.3f flags=%s",
            source_id,
            assessment.quality_weight,
            [f.value for f in assessment.anomaly_flags] or "-",
        )

    if not result.ok:
        assert result.error is not None
        logger.error("Build failed [%s]: %s", result.error.code, result.error.message)
        return 1

    assert result.profile is not None
    logger.info(
        "Profile %s built: confidence=%.4f, tone attribution=%s",
        result.profile.profile_id,
        result.profile.confidence,
        ", ".join(
            f"{c.source_type.value} {c.contribution_percent}%"
            for c in result.profile.source_attribution.get(BasicAttribute.TONE, [])
        ),
    )
    _write_profile(result.profile.to_json(), args.out)
    return 0


async def run_refine(args: argparse.Namespace, agent: "StyleProfileAgent") -> int:
    from digitalme.exceptions import ProfileSchemaError
    from digitalme.models import OutcomeStatus, StyleProfile
    from digitalme.style.source_importer import SourceImporter

    try:
        profile = StyleProfile.from_json(Path(args.profile).read_text(encoding="utf-8"))
    except ProfileSchemaError as exc:
        logger.error("Cannot load profile %s: %s", args.profile, exc)
        return 1
    messages = await SourceImporter().load_messages(args.messages)

    result = await agent.refine_profile(profile, messages)

    if result.status is OutcomeStatus.FAILED:
        assert result.error is not None
        logger.error("Refinement failed [%s]: %s", result.error.code, result.error.message)
        for issue in result.error.issues:
            logger.error("  - %s", issue)
        return 1
    if result.status is OutcomeStatus.NO_OP:
        logger.info("Nothing to apply (%s); profile unchanged", result.reason)
        return 0

    logger.info(
        "Refinement applied: %d change(s), confidence %+.4f",
        len(result.delta.changes),
        result.delta.confidence_change,
    )
    print(json.dumps(result.delta.to_dict(), indent=2))
    _write_profile(result.profile.to_json(), args.out)
    return 0


async def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    from digitalme.config import get_settings
    from digitalme.logging import ComponentLogger, LogComponent, init_logger
    from digitalme.style.profile_agent import StyleProfileAgent

    settings = get_settings()
    logging.getLogger().setLevel(settings.log_level.upper())
    log_dir = args.log_dir or settings.log_dir
    event_logger = init_logger(log_dir=log_dir)
    event_logger.set_context(operation=args.command)

    events = ComponentLogger(LogComponent.CLI, event_logger)
    agent = StyleProfileAgent(config=settings.engine, events=events)

    async with events.timed(f"{args.command} command"):
        if args.command == "build":
            status = await run_build(args, agent)
        else:
            status = await run_refine(args, agent)

    errors = event_logger.summarize()["errors"]
    if errors:
        logger.warning("%d error event(s) recorded in %s", len(errors), log_dir)
    return status


if __name__ == "__main__":
    try:
        sys.exit(asyncio.run(main()))
    except KeyboardInterrupt:
        logger.info("Interrupted")
        sys.exit(0)

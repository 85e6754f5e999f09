"""Command-line interface for the audit pipeline."""

import asyncio
import json
import sys
from typing import Optional

from seo_audit.aggregator import aggregate
from seo_audit.browser_config import BrowserConfig
from seo_audit.config import PipelineConfig
from seo_audit.database import get_job_store
from seo_audit.exceptions import AuditError, ConfigurationError, ValidationError
from seo_audit.extractor import FeatureExtractor
from seo_audit.infrastructure import BrowserPool
from seo_audit.llm import ScoringClient
from seo_audit.logging_config import setup_logging
from seo_audit.models import AnalysisJob, AnalysisType, JobStatus
from seo_audit.orchestrator import JobOrchestrator, SubmitOptions
from seo_audit.prompts import PromptCatalog

EXIT_INPUT_ERROR = 1
EXIT_JOB_FAILED = 2


def _load_catalog(prompts_file: Optional[str]) -> PromptCatalog:
    if prompts_file:
        return PromptCatalog.from_file(prompts_file)
    return PromptCatalog.with_defaults()


def print_job(job: AnalysisJob) -> None:
    """Print a job and its score breakdown in a formatted way."""
    print(f"\n{'=' * 60}")
    print(f"SEO Analysis for: {job.url}")
    print(f"Job: {job.id}  Type: {job.analysis_type.value}  Status: {job.status.value}")
    print(f"{'=' * 60}")

    if job.overall_score is not None:
        print(f"\n📊 Overall Score: {job.overall_score}/100")
    else:
        print("\n📊 Overall Score: n/a")

    if job.error:
        print(f"\n⚠️  {job.error_reason}: {job.error}")

    breakdown = aggregate(job.categories, job.expected_categories).breakdown
    if breakdown:
        print("\nCategories:")
    for item in breakdown:
        if item.color is None:
            print(f"  • {item.category}: {item.status.value} ({item.error})")
            continue
        print(f"  • {item.category}: {item.score:g}/{item.max_score:g} [{item.color}]")
        for issue in item.issues:
            location = f" ({issue.location_hint})" if issue.location_hint else ""
            print(f"      - {issue.severity.value}: {issue.message}{location}")

    if job.validation:
        print(f"\n🔍 Rule-based checks: {job.validation.overall_score}/100")
        for item in job.validation.priorities:
            print(f"  • [{item.priority.value}] {item.area}: {item.score}/100 (effort: {item.effort})")
            for issue in item.issues:
                print(f"      - {issue}")

    if job.summary:
        print("\n📝 Summary:")
        print(job.summary)

    if job.recommendations:
        print("\n💡 Recommendations:")
        for i, rec in enumerate(job.recommendations, 1):
            print(f"  {i}. [{rec.priority.value}] {rec.title}")
            if rec.why:
                print(f"     {rec.why}")

    print(f"\n{'=' * 60}\n")


def _job_json(job: AnalysisJob) -> str:
    data = job.to_dict()
    data["breakdown"] = aggregate(job.categories, job.expected_categories).to_dict()["breakdown"]
    return json.dumps(data, indent=2, default=str)


async def _run_analysis(config: PipelineConfig, args) -> AnalysisJob:
    catalog = _load_catalog(args.prompts_file)
    store = get_job_store(config.database_url)
    scorer = ScoringClient.from_config(config)
    browser_config = BrowserConfig.from_pipeline_config(config)
    try:
        async with BrowserPool(browser_config, max_size=config.browser_pool_size) as pool:
            orchestrator = JobOrchestrator(
                pool=pool,
                extractor=FeatureExtractor(wait_until=browser_config.wait_until),
                catalog=catalog,
                scorer=scorer,
                store=store,
                config=config,
            )
            return await orchestrator.analyze(
                args.url,
                args.type,
                SubmitOptions(custom_prompt_id=args.prompt_id),
            )
    finally:
        store.close()


def analyze_command(args) -> int:
    """Run one analysis job end to end."""
    try:
        config = PipelineConfig.from_env().validate()
    except ConfigurationError as e:
        print(f"Configuration error: {e}")
        return EXIT_INPUT_ERROR

    try:
        job = asyncio.run(_run_analysis(config, args))
    except ValidationError as e:
        print(f"Invalid request: {e}")
        return EXIT_INPUT_ERROR
    except AuditError as e:
        print(f"Error: {e}")
        return EXIT_JOB_FAILED

    if args.json:
        print(_job_json(job))
    else:
        print_job(job)
    return EXIT_JOB_FAILED if job.status == JobStatus.FAILED else 0


def status_command(args) -> int:
    """Show a persisted job."""
    config = PipelineConfig.from_env()
    try:
        store = get_job_store(config.database_url)
    except ConfigurationError as e:
        print(f"Configuration error: {e}")
        return EXIT_INPUT_ERROR

    try:
        job = store.get_job(args.job_id)
    finally:
        store.close()

    if job is None:
        print(f"Job {args.job_id} not found")
        return EXIT_INPUT_ERROR
    if args.json:
        print(_job_json(job))
    else:
        print_job(job)
    return 0


def jobs_command(args) -> int:
    """List persisted jobs, newest first."""
    config = PipelineConfig.from_env()
    try:
        store = get_job_store(config.database_url)
    except ConfigurationError as e:
        print(f"Configuration error: {e}")
        return EXIT_INPUT_ERROR

    try:
        status = JobStatus(args.status) if args.status else None
        jobs = store.list_jobs(status=status, limit=args.limit)
        counts = store.count_by_status()
    finally:
        store.close()

    if not jobs:
        print("No jobs found")
        return 0
    for job in jobs:
        score = f"{job.overall_score}" if job.overall_score is not None else "n/a"
        print(
            f"{job.id}  {job.created_at:%Y-%m-%d %H:%M}  {job.status.value:<16} "
            f"{score:>6}  {job.analysis_type.value:<20} {job.url}"
        )
    summary = ", ".join(f"{name}={count}" for name, count in sorted(counts.items()))
    print(f"\nTotals: {summary}")
    return 0


def prompts_command(args) -> int:
    """List prompt templates."""
    catalog = _load_catalog(args.prompts_file)
    templates = catalog.list_templates(category=args.category)
    if not templates:
        print("No prompt templates found")
        return 0
    for template in templates:
        default = " (default)" if template.is_default else ""
        print(f"{template.id}  [{template.category}] {template.name}{default}")
        if template.description:
            print(f"    {template.description}")
    return 0


def main(argv: Optional[list[str]] = None) -> int:
    """Main CLI entry point."""
    import argparse

    parser = argparse.ArgumentParser(
        description="SEO Audit - Score a web page per SEO category using an LLM"
    )

    # Global flags (before subcommands)
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default=None,
        help="Set logging verbosity (default: LOG_LEVEL or INFO)",
    )
    parser.add_argument(
        "--log-file",
        help="Write logs to file in addition to console",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    analyze_parser = subparsers.add_parser("analyze", help="Audit a URL.")
    analyze_parser.add_argument("url", help="URL to audit (http or https)")
    analyze_parser.add_argument(
        "--type",
        default=AnalysisType.COMPLETE_SEO_AUDIT.value,
        help="Analysis type (default: complete-seo-audit)",
    )
    analyze_parser.add_argument("--prompt-id", help="Prompt template id for custom analyses")
    analyze_parser.add_argument("--prompts-file", help="JSON file of prompt templates")
    analyze_parser.add_argument("--json", action="store_true", help="Print the job as JSON")
    analyze_parser.set_defaults(func=analyze_command)

    status_parser = subparsers.add_parser("status", help="Show a stored job.")
    status_parser.add_argument("job_id", help="Job id printed by analyze")
    status_parser.add_argument("--json", action="store_true", help="Print the job as JSON")
    status_parser.set_defaults(func=status_command)

    jobs_parser = subparsers.add_parser("jobs", help="List stored jobs.")
    jobs_parser.add_argument(
        "--status",
        choices=[s.value for s in JobStatus],
        help="Only show jobs in this status",
    )
    jobs_parser.add_argument("--limit", type=int, default=20, help="Maximum jobs to list (default: 20)")
    jobs_parser.set_defaults(func=jobs_command)

    prompts_parser = subparsers.add_parser("prompts", help="List prompt templates.")
    prompts_parser.add_argument("--category", help="Only show this category")
    prompts_parser.add_argument("--prompts-file", help="JSON file of prompt templates")
    prompts_parser.set_defaults(func=prompts_command)

    args = parser.parse_args(argv)

    try:
        env_config = PipelineConfig.from_env()
        setup_logging(
            level=args.log_level or env_config.log_level,
            log_file=args.log_file or env_config.log_file,
        )
    except ConfigurationError as e:
        print(f"Configuration error: {e}")
        return EXIT_INPUT_ERROR

    if not hasattr(args, "func"):
        parser.print_help()
        return 0
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())

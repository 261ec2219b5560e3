#!/usr/bin/env python3
"""
Insider Risk Monitor CLI
Command-line interface for running the analysis pipeline over stored
user and activity datasets
"""

import argparse
import json
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

import pandas as pd

from config import get_config
from models_validation import ActivityLogEntry, AdditionalData, Role, User
from monitoring import setup_monitoring
from insider_risk import InMemoryActivityStore, InMemoryUserStore, Pipeline, create_pipeline

ACTIVITY_COLUMNS = {"user_id", "action", "timestamp"}


def load_frame(path: str) -> pd.DataFrame:
    """Read a CSV or JSON dataset into a DataFrame."""
    if not Path(path).exists():
        raise FileNotFoundError(f"Dataset file not found: {path}")
    if path.endswith(".csv"):
        return pd.read_csv(path)
    if path.endswith(".json"):
        return pd.read_json(path)
    raise ValueError("Unsupported file format. Use CSV or JSON.")


def _optional(value: Any) -> Any:
    return None if pd.isna(value) else value


def users_from_frame(df: pd.DataFrame) -> List[User]:
    users = []
    for row in df.to_dict(orient="records"):
        users.append(User(
            id=str(row["id"]),
            name=_optional(row.get("name")) or "",
            email=_optional(row.get("email")) or "",
            role=Role(_optional(row.get("role")) or Role.INTERN.value),
            is_blocked=bool(_optional(row.get("is_blocked")) or False),
        ))
    return users


def activity_from_frame(df: pd.DataFrame) -> List[ActivityLogEntry]:
    missing = ACTIVITY_COLUMNS - set(df.columns)
    if missing:
        raise ValueError(f"Activity dataset missing columns: {', '.join(sorted(missing))}")

    df = df.copy()
    df["timestamp"] = pd.to_datetime(df["timestamp"], utc=True)

    entries = []
    for row in df.to_dict(orient="records"):
        work_hours = _optional(row.get("work_hours"))
        entries.append(ActivityLogEntry(
            user_id=str(row["user_id"]),
            role=_optional(row.get("role")),
            action=str(row["action"]),
            timestamp=row["timestamp"].to_pydatetime(),
            ip_address=_optional(row.get("ip_address")),
            additional_data=AdditionalData(
                risk_score=float(_optional(row.get("risk_score")) or 0.0),
                details=_optional(row.get("details")),
                work_hours=None if work_hours is None else bool(work_hours),
            ),
        ))
    return entries


class InsiderRiskCLI:
    """Command-line interface for insider risk operations"""

    def __init__(self, users_path: str, activity_path: str):
        users = users_from_frame(load_frame(users_path))
        entries = activity_from_frame(load_frame(activity_path))
        self.pipeline: Pipeline = create_pipeline(
            activity_store=InMemoryActivityStore(entries),
            user_store=InMemoryUserStore(users),
        )
        print(f"📁 Loaded {len(users):,} users and {len(entries):,} activity entries")

    def analyze_user(self, args) -> Dict[str, Any]:
        """Analyze one user's activity window"""
        print(f"🔍 Analyzing user {args.user_id} over the last {args.window} days")
        print("=" * 60)

        result = self.pipeline.analyzer.analyze_user_behavior(args.user_id, args.window)

        print(f"🎯 Risk Score: {result.risk_score:.3f} ({result.risk_level.value})")
        print(f"⚙️  Method: {result.analysis_method}")
        print(f"📝 Analysis: {result.analysis}")
        if result.recommendations:
            print("\n📋 Recommendations:")
            for rec in result.recommendations:
                print(f"  - {rec}")
        if result.warnings and args.show_details:
            print("\n⚠️  Warnings:")
            for warning in result.warnings:
                print(f"  - {warning}")

        return result.model_dump(mode="json")

    def weekly(self, args) -> Dict[str, Any]:
        """Run the weekly batch analysis and apply its actions"""
        print("🚀 Running weekly analysis...")
        print("=" * 60)

        result = self.pipeline.scheduler.trigger_weekly_analysis()

        print("\n✅ Analysis Complete!")
        print(f"👥 Users analyzed: {len(result.analysis_results):,}")
        print(f"🚫 Blocked: {result.blocked_count}")
        print(f"👀 Monitored: {result.monitored_count}")
        if result.failures:
            print(f"❌ Failures: {len(result.failures)}")

        if result.flagged and args.show_details:
            print(f"\n🚨 Top {min(10, len(result.flagged))} Flagged Users:")
            ranked = sorted(result.flagged, key=lambda item: item.result.risk_score, reverse=True)
            for i, item in enumerate(ranked[:10], 1):
                print(f"  {i:>2}. {item.user_id:<15} "
                      f"Role: {item.role.value:<8} "
                      f"Risk: {item.result.risk_score:.3f} "
                      f"Action: {item.action}")

        return result.summary

    def health(self, args) -> Dict[str, Any]:
        """Run the infrastructure health check"""
        status = self.pipeline.scheduler.trigger_health_check()

        print(f"🔧 Healthy: {'Yes' if status.is_healthy else 'No'}")
        print(f"🚨 Critical issues: {status.critical_issues}")
        for issue in status.issues:
            print(f"  - {issue}")

        return status.model_dump(mode="json")


def _save(results: Dict[str, Any], output_path: Optional[str]) -> None:
    if not output_path:
        return
    with open(output_path, "w") as f:
        json.dump(results, f, indent=2, default=str)
    print(f"\n💾 Results saved to: {output_path}")


def _add_dataset_args(subparser: argparse.ArgumentParser) -> None:
    subparser.add_argument("--users", "-u", required=True, help="Users dataset (CSV or JSON)")
    subparser.add_argument("--activity", "-a", required=True, help="Activity dataset (CSV or JSON)")
    subparser.add_argument("--output", "-o", help="Output file for results (JSON)")


def main():
    """Main CLI entry point"""
    parser = argparse.ArgumentParser(
        description="Insider Risk Monitor CLI - Analyze stored activity for insider threats",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  insider-risk analyze-user u42 --users users.json --activity activity.csv
  insider-risk weekly --users users.json --activity activity.csv --show-details
  insider-risk health --users users.json --activity activity.csv
  insider-risk serve
        """
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    analyze_parser = subparsers.add_parser("analyze-user", help="Analyze one user's activity")
    analyze_parser.add_argument("user_id", help="User to analyze")
    analyze_parser.add_argument("--window", "-w", type=int, default=7,
                                help="Window in days (default: 7)")
    analyze_parser.add_argument("--show-details", action="store_true",
                                help="Show fallback warnings")
    _add_dataset_args(analyze_parser)

    weekly_parser = subparsers.add_parser("weekly", help="Run the weekly analysis")
    weekly_parser.add_argument("--show-details", action="store_true",
                               help="Show flagged users")
    _add_dataset_args(weekly_parser)

    health_parser = subparsers.add_parser("health", help="Run the health check")
    _add_dataset_args(health_parser)

    subparsers.add_parser("serve", help="Run the MCP server")
    subparsers.add_parser("version", help="Show version information")

    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        sys.exit(1)

    config = get_config()

    if args.command == "version":
        print(f"Insider Risk Monitor CLI v{config.APP_VERSION}")
        return
    if args.command == "serve":
        from server import main as serve
        serve()
        return

    setup_monitoring(config.APP_NAME, config.APP_VERSION, config.LOG_LEVEL, config.LOG_FILE)

    try:
        cli = InsiderRiskCLI(args.users, args.activity)
        if args.command == "analyze-user":
            results = cli.analyze_user(args)
        elif args.command == "weekly":
            results = cli.weekly(args)
        else:
            results = cli.health(args)
    except (FileNotFoundError, ValueError) as e:
        print(f"❌ Error: {e}")
        sys.exit(1)

    _save(results, args.output)


if __name__ == "__main__":
    main()

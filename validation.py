"""
Consistency checks for activity snapshots.

Errors mark a snapshot as invalid. Warnings do not: totals are a cache
that normalize_activity() repairs, and an empty title is just noise.
Nothing here raises; the caller decides what to do with the report.
"""

from typing import Iterable

from model import (
    ISSUE_STATES,
    PR_STATES,
    ActivitySnapshot,
    ValidationResult,
    ValidationSummary,
)
from normalize import parse_timestamp


def validate_activity(snapshot: ActivitySnapshot) -> ValidationResult:
    """
    Check a stored snapshot for missing fields and inconsistent totals.

    Args:
        snapshot: Snapshot as loaded from storage, possibly partial

    Returns:
        ValidationResult. Missing ids, repositories, unparsable timestamps
        and unknown states are errors; empty titles and totals that do not
        match the list lengths are warnings.
    """
    errors: list[str] = []
    warnings: list[str] = []

    # Required fields
    if not snapshot.id:
        errors.append("Activity ID is missing")
    if not snapshot.user_id:
        errors.append("User ID is missing")
    if not snapshot.date:
        errors.append("Date is missing")
    elif parse_timestamp(snapshot.date) is None:
        errors.append("Invalid date format")

    # Cached totals vs actual counts
    if snapshot.total_commits != len(snapshot.commits):
        warnings.append(
            f"Total commits mismatch: {snapshot.total_commits} vs {len(snapshot.commits)}"
        )
    if snapshot.total_pull_requests != len(snapshot.pull_requests):
        warnings.append(
            f"Total PRs mismatch: {snapshot.total_pull_requests} vs {len(snapshot.pull_requests)}"
        )
    if snapshot.total_issues != len(snapshot.issues):
        warnings.append(
            f"Total issues mismatch: {snapshot.total_issues} vs {len(snapshot.issues)}"
        )

    for index, commit in enumerate(snapshot.commits):
        if not commit.sha:
            errors.append(f"Commit {index}: SHA is missing")
        if not commit.message:
            warnings.append(f"Commit {index}: Message is empty")
        if not commit.repository:
            errors.append(f"Commit {index}: Repository is missing")
        if parse_timestamp(commit.timestamp) is None:
            errors.append(f"Commit {index}: Invalid timestamp")

    for index, pr in enumerate(snapshot.pull_requests):
        if not pr.id:
            errors.append(f"PR {index}: ID is missing")
        if not pr.title:
            warnings.append(f"PR {index}: Title is empty")
        if not pr.repository:
            errors.append(f"PR {index}: Repository is missing")
        if pr.state not in PR_STATES:
            errors.append(f"PR {index}: Invalid state '{pr.state}'")
        if parse_timestamp(pr.timestamp) is None:
            errors.append(f"PR {index}: Invalid timestamp")

    for index, issue in enumerate(snapshot.issues):
        if not issue.id:
            errors.append(f"Issue {index}: ID is missing")
        if not issue.title:
            warnings.append(f"Issue {index}: Title is empty")
        if not issue.repository:
            errors.append(f"Issue {index}: Repository is missing")
        if issue.state not in ISSUE_STATES:
            errors.append(f"Issue {index}: Invalid state '{issue.state}'")
        if parse_timestamp(issue.timestamp) is None:
            errors.append(f"Issue {index}: Invalid timestamp")

    return ValidationResult(is_valid=not errors, errors=errors, warnings=warnings)


def validate_activities(snapshots: Iterable[ActivitySnapshot]) -> ValidationSummary:
    """Validate each snapshot and count the outcomes."""
    results = [validate_activity(s) for s in snapshots]
    return ValidationSummary(
        valid_count=sum(1 for r in results if r.is_valid),
        invalid_count=sum(1 for r in results if not r.is_valid),
        total_warnings=sum(len(r.warnings) for r in results),
        results=results,
    )

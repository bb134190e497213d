"""
Tests for snapshot normalization, deduplication and summaries.
"""

from datetime import datetime, timezone

import pytest

from model import ActivitySnapshot, CommitRecord, IssueRecord, PullRequestRecord
from normalize import (
    calculate_activity_stats,
    create_activity_summary,
    deduplicate_commits,
    deduplicate_issues,
    deduplicate_pull_requests,
    filter_activities_by_date_range,
    group_activities_by_date,
    normalize_activities,
    normalize_activity,
    optimize_activity_data,
    parse_timestamp,
    sort_activities_by_date,
)


def commit(sha, timestamp="2024-01-15T10:00:00Z", repository="octocat/hello", message="Fix"):
    return CommitRecord(
        sha=sha,
        message=message,
        url=f"https://github.com/{repository}/commit/{sha}",
        repository=repository,
        timestamp=timestamp,
    )


def pull_request(pr_id, timestamp="2024-01-15T09:00:00Z", repository="octocat/hello", state="open"):
    return PullRequestRecord(
        id=pr_id,
        title=f"PR {pr_id}",
        url=f"https://github.com/{repository}/pull/{pr_id}",
        repository=repository,
        state=state,
        timestamp=timestamp,
    )


def issue(issue_id, timestamp="2024-01-15T11:00:00Z", repository="octocat/hello"):
    return IssueRecord(
        id=issue_id,
        title=f"Issue {issue_id}",
        url=f"https://github.com/{repository}/issues/{issue_id}",
        repository=repository,
        timestamp=timestamp,
    )


def day(date, commits=(), prs=(), issues=()):
    return ActivitySnapshot(
        id=f"act-{date}",
        user_id="user-1",
        date=date,
        commits=list(commits),
        pull_requests=list(prs),
        issues=list(issues),
        total_commits=len(commits),
        total_pull_requests=len(prs),
        total_issues=len(issues),
    )


class TestParseTimestamp:
    """Test timestamp parsing"""

    def test_parses_zulu_suffix(self):
        assert parse_timestamp("2024-01-15T10:00:00Z") == datetime(
            2024, 1, 15, 10, tzinfo=timezone.utc
        )

    def test_plain_date_is_midnight_utc(self):
        assert parse_timestamp("2024-01-15") == datetime(2024, 1, 15, tzinfo=timezone.utc)

    def test_naive_datetime_is_taken_as_utc(self):
        assert parse_timestamp(datetime(2024, 1, 15, 8)).tzinfo == timezone.utc

    @pytest.mark.parametrize("value", ["", "   ", "not a date", None, "2024-13-40"])
    def test_unparsable_returns_none(self, value):
        assert parse_timestamp(value) is None


class TestDeduplicate:
    """Test duplicate collapsing by key"""

    def test_keeps_most_recent_commit(self):
        """Same SHA at 10:00 and 12:00 collapses to the 12:00 version"""
        result = deduplicate_commits(
            [commit("abc", "2024-01-15T10:00:00Z"), commit("abc", "2024-01-15T12:00:00Z")]
        )

        assert len(result) == 1
        assert result[0].timestamp == "2024-01-15T12:00:00Z"

    def test_input_order_does_not_matter(self):
        newer_first = deduplicate_commits(
            [commit("abc", "2024-01-15T12:00:00Z"), commit("abc", "2024-01-15T10:00:00Z")]
        )

        assert newer_first[0].timestamp == "2024-01-15T12:00:00Z"

    def test_equal_timestamps_keep_first_seen(self):
        result = deduplicate_commits(
            [commit("abc", message="first"), commit("abc", message="second")]
        )

        assert result[0].message == "first"

    def test_unparsable_timestamp_never_replaces(self):
        result = deduplicate_commits([commit("abc", "2024-01-15T10:00:00Z"), commit("abc", "garbage")])

        assert result[0].timestamp == "2024-01-15T10:00:00Z"

    def test_parsable_timestamp_replaces_unparsable(self):
        result = deduplicate_commits([commit("abc", "garbage"), commit("abc", "2024-01-15T10:00:00Z")])

        assert result[0].timestamp == "2024-01-15T10:00:00Z"

    def test_distinct_keys_keep_first_seen_order(self):
        result = deduplicate_commits([commit("b"), commit("a"), commit("b")])

        assert [c.sha for c in result] == ["b", "a"]

    def test_pull_requests_and_issues_dedupe_by_id(self):
        prs = deduplicate_pull_requests(
            [pull_request(1), pull_request(2), pull_request(1, "2024-01-15T18:00:00Z")]
        )
        issues = deduplicate_issues([issue(7), issue(7)])

        assert [pr.id for pr in prs] == [1, 2]
        assert prs[0].timestamp == "2024-01-15T18:00:00Z"
        assert len(issues) == 1

    def test_idempotent(self):
        once = deduplicate_commits([commit("a"), commit("a", "2024-01-15T11:00:00Z"), commit("b")])

        assert deduplicate_commits(once) == once


class TestNormalizeActivity:
    """Test normalize_activity"""

    def test_recomputes_totals_from_lists(self):
        snapshot = day("2024-01-15", commits=[commit("abc"), commit("abc"), commit("def")])
        snapshot.total_commits = 7

        normalized = normalize_activity(snapshot)

        assert [c.sha for c in normalized.commits] == ["abc", "def"]
        assert normalized.total_commits == 2
        assert normalized.total_pull_requests == 0

    def test_does_not_mutate_input(self):
        snapshot = day("2024-01-15", commits=[commit("abc"), commit("abc")])

        normalize_activity(snapshot)

        assert len(snapshot.commits) == 2
        assert snapshot.total_commits == 2

    def test_keeps_identity_fields(self):
        normalized = normalize_activity(day("2024-01-15", commits=[commit("abc")]))

        assert normalized.id == "act-2024-01-15"
        assert normalized.user_id == "user-1"
        assert normalized.date == "2024-01-15"

    def test_normalize_activities_keeps_order(self):
        snapshots = [
            day("2024-01-14", commits=[commit("a"), commit("a")]),
            day("2024-01-16"),
            day("2024-01-15", commits=[commit("b")]),
        ]

        normalized = normalize_activities(snapshots)

        assert [s.date for s in normalized] == ["2024-01-14", "2024-01-16", "2024-01-15"]
        assert [s.total_commits for s in normalized] == [1, 0, 1]


class TestOrdering:
    """Test sorting, grouping and range filtering"""

    def test_sort_newest_first_with_unparsable_last(self):
        snapshots = [day("2024-01-14"), day("bogus"), day("2024-01-16"), day("2024-01-15")]

        result = sort_activities_by_date(snapshots)

        assert [s.date for s in result] == ["2024-01-16", "2024-01-15", "2024-01-14", "bogus"]

    def test_group_by_date(self):
        grouped = group_activities_by_date([day("2024-01-15"), day("2024-01-16"), day("2024-01-15")])

        assert sorted(grouped) == ["2024-01-15", "2024-01-16"]
        assert len(grouped["2024-01-15"]) == 2

    def test_filter_range_is_inclusive(self):
        snapshots = [day("2024-01-13"), day("2024-01-14"), day("2024-01-15"), day("2024-01-16")]

        result = filter_activities_by_date_range(snapshots, "2024-01-14", "2024-01-15")

        assert [s.date for s in result] == ["2024-01-14", "2024-01-15"]

    def test_filter_rejects_invalid_bounds(self):
        with pytest.raises(ValueError):
            filter_activities_by_date_range([day("2024-01-15")], "yesterday", "2024-01-16")


class TestOptimizeActivityData:
    """Test optimize_activity_data"""

    def test_drops_empty_days_and_sorts(self):
        snapshots = [
            day("2024-01-14", commits=[commit("a")]),
            day("2024-01-15"),
            day("2024-01-16", issues=[issue(1)]),
        ]

        result = optimize_activity_data(snapshots)

        assert [s.date for s in result] == ["2024-01-16", "2024-01-14"]

    def test_idempotent(self):
        snapshots = [
            day("2024-01-14", commits=[commit("a"), commit("a", "2024-01-14T12:00:00Z")]),
            day("2024-01-16", prs=[pull_request(3)]),
        ]

        once = optimize_activity_data(snapshots)

        assert optimize_activity_data(once) == once

    def test_empty_input(self):
        assert optimize_activity_data([]) == []


class TestCalculateActivityStats:
    """Test calculate_activity_stats"""

    def test_empty_input_has_zero_averages(self):
        stats = calculate_activity_stats([])

        assert stats.total_activities == 0
        assert stats.active_days == 0
        assert stats.average_commits_per_day == 0
        assert stats.most_active_repository is None
        assert stats.unique_repositories == set()

    def test_totals_and_averages(self):
        snapshots = [
            day("2024-01-14", commits=[commit("a"), commit("b")], prs=[pull_request(1)]),
            day("2024-01-15", commits=[commit("c")], issues=[issue(2, repository="octocat/world")]),
        ]

        stats = calculate_activity_stats(snapshots)

        assert stats.total_commits == 3
        assert stats.total_pull_requests == 1
        assert stats.total_issues == 1
        assert stats.active_days == 2
        assert stats.average_commits_per_day == 1.5
        assert stats.average_prs_per_day == 0.5
        assert stats.unique_repositories == {"octocat/hello", "octocat/world"}
        assert stats.most_active_repository == "octocat/hello"
        assert stats.most_active_repository_count == 4

    def test_tie_goes_to_first_seen_repository(self):
        snapshots = [
            day(
                "2024-01-15",
                commits=[commit("a", repository="octocat/first"), commit("b", repository="octocat/second")],
            )
        ]

        stats = calculate_activity_stats(snapshots)

        assert stats.most_active_repository == "octocat/first"
        assert stats.most_active_repository_count == 1


class TestCreateActivitySummary:
    """Test create_activity_summary"""

    def test_summary_covers_optimized_days(self):
        now = datetime(2024, 1, 20, tzinfo=timezone.utc)
        snapshots = [
            day("2024-01-14", commits=[commit("a", repository="octocat/world")]),
            day("2024-01-15"),
            day("2024-01-16", commits=[commit("b"), commit("c")], prs=[pull_request(1)]),
        ]

        summary = create_activity_summary(snapshots, "user-1", now=now)

        assert summary.user_id == "user-1"
        assert summary.start == datetime(2024, 1, 14, tzinfo=timezone.utc)
        assert summary.end == datetime(2024, 1, 16, tzinfo=timezone.utc)
        assert summary.last_updated == now
        assert [s.date for s in summary.recent_activities] == ["2024-01-16", "2024-01-14"]
        assert [(r.name, r.count) for r in summary.top_repositories] == [
            ("octocat/hello", 3),
            ("octocat/world", 1),
        ]

    def test_top_repositories_capped_at_ten(self):
        commits = [commit(f"sha{n}", repository=f"octocat/repo{n}") for n in range(12)]

        summary = create_activity_summary([day("2024-01-15", commits=commits)], "user-1")

        assert len(summary.top_repositories) == 10

    def test_empty_history_uses_now(self):
        now = datetime(2024, 1, 20, tzinfo=timezone.utc)

        summary = create_activity_summary([], "user-1", now=now)

        assert summary.start == now
        assert summary.end == now
        assert summary.stats.total_activities == 0
        assert summary.recent_activities == []

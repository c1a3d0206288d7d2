"""
Report Aggregator: groups pages by tag, clusters rows by diff fingerprint
and orders everything deterministically.
"""

from datetime import datetime, timezone
from typing import Callable, Dict, Iterable, List, Optional

from report.models import ChangeGroup, PageState, ReportRow
from tracker.grouping import group_by
from tracker.hasher import display_hash, is_empty_hash
from tracker.logger import logger
from tracker.models import Page, Version

ERRORS_GROUP = "errors"
NO_GROUP = "(no group)"

# Text diff length (bytes) treated as a maximal change by the default scorer
PRIORITY_SCALE = 2000


def default_priority(version: Version) -> float:
    """Explicit priority when set, otherwise a 0-1 score from the text diff size."""
    if version.priority is not None:
        return float(version.priority)
    if not version.text_diff_length or is_empty_hash(version.text_diff_hash):
        return 0.0
    return min(1.0, version.text_diff_length / PRIORITY_SCALE)


class ReportAggregator:
    def __init__(
        self,
        tag_prefix: str = "site:",
        default_group: str = NO_GROUP,
        priority: Callable[[Version], float] = default_priority,
        skip_unchanged: bool = False,
        now: Optional[datetime] = None,
    ):
        self.tag_prefix = tag_prefix
        self.default_group = default_group
        self.priority = priority
        self.skip_unchanged = skip_unchanged
        self.now = now or datetime.now(timezone.utc)

    # --------------------------------------------------
    # Grouping
    # --------------------------------------------------
    def group_for(self, page: Page) -> str:
        names = sorted(
            tag[len(self.tag_prefix):].strip()
            for tag in page.tags
            if tag.startswith(self.tag_prefix)
        )
        names = [name for name in names if name]
        return names[0] if names else self.default_group

    def page_states(self, page: Page) -> List[PageState]:
        """
        A page whose most recent version is an error goes to the errors
        group; if it also has an earlier safe version, a second state with
        that version as latest goes to the page's normal group.
        """
        history = page.all_versions()
        if not history:
            return []
        earliest, latest = history[0], history[-1]
        if not latest.is_error:
            return [PageState(page, latest, earliest, self.group_for(page))]

        states = [PageState(page, latest, earliest, ERRORS_GROUP)]
        safe = [v for v in history if not v.is_error]
        if safe:
            states.append(PageState(page, safe[-1], earliest, self.group_for(page)))
        return states

    def assign_groups(self, pages: Iterable[Page]) -> Dict[str, List[PageState]]:
        states = []
        for page in pages:
            for state in self.page_states(page):
                if self.skip_unchanged and is_empty_hash(state.latest.text_diff_hash):
                    continue
                states.append(state)
        return group_by(states, key=lambda s: s.group)

    # --------------------------------------------------
    # Ordering
    # --------------------------------------------------
    @staticmethod
    def cluster_key(state: PageState) -> str:
        # Rows without a fingerprint never cluster with anything
        return state.latest.diff_hash or f"~{state.page.id}/{state.latest.id}"

    def order(self, states: Iterable[PageState]) -> List[PageState]:
        """
        Cluster by exact diff hash, sort clusters by their highest priority
        (descending), and keep each cluster contiguous. Inside a cluster:
        diff hash, priority descending, capture time, then ids.
        """
        states = list(states)
        scores = {(s.page.id, s.latest.id): self.priority(s.latest) for s in states}

        def score(state):
            return scores[(state.page.id, state.latest.id)]

        def member_key(state):
            return (
                state.latest.diff_hash or "",
                -score(state),
                state.latest.date,
                state.latest.id,
                state.page.id,
                state.group,
            )

        clusters = []
        for key, members in group_by(states, key=self.cluster_key).items():
            members.sort(key=member_key)
            clusters.append(ChangeGroup(key=key, members=members, max_priority=max(score(s) for s in members)))
        clusters.sort(key=lambda c: (-c.max_priority, c.key))
        return [state for cluster in clusters for state in cluster.members]

    # --------------------------------------------------
    # Rows
    # --------------------------------------------------
    def to_row(self, index: int, state: PageState) -> ReportRow:
        page, latest = state.page, state.latest
        return ReportRow(
            index=index,
            version_id=latest.id,
            output_date=self.now,
            maintainers=", ".join(page.maintainers) or page.site_name,
            group=state.group,
            title=page.title or page.url,
            url=page.url,
            page_view_url=page.view_url,
            diff_url=latest.diff_url or "",
            diff_with_first_url=latest.diff_with_first_url or "",
            capture_time=latest.date,
            earliest_capture_time=state.earliest.date,
            diff_length=latest.diff_length,
            diff_hash=display_hash(latest.diff_hash),
            text_diff_length=latest.text_diff_length,
            text_diff_hash=display_hash(latest.text_diff_hash),
            priority=self.priority(latest),
        )

    def build_report(self, pages: Iterable[Page]) -> List[ReportRow]:
        """
        One flat table. Clustering and ordering run over every group at once,
        so rows sharing a diff hash stay adjacent even across groups.
        """
        grouped = self.assign_groups(pages)
        for name in sorted(grouped, key=lambda name: (name == ERRORS_GROUP, name)):
            logger.info(f"[REPORT] Group '{name}': {len(grouped[name])} row(s)")
        ordered = self.order(state for states in grouped.values() for state in states)
        return [self.to_row(i, state) for i, state in enumerate(ordered, start=1)]

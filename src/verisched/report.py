"""Reporter: renders scheduler snapshots as plain text.

Presentation only: nothing here feeds back into scheduling. The glyph
table is the single mapping from Status to display symbol.
"""

from __future__ import annotations

from collections.abc import Sequence

from verisched.attempt import LoopResult
from verisched.schemas import (
    AttemptRecord,
    DecisionRecord,
    RankedUnit,
    SchedulerSnapshot,
    Status,
)

STATUS_GLYPHS: dict[Status, str] = {
    Status.VERIFIED: "[OK]",
    Status.IN_PROGRESS: "[..]",
    Status.UNSPECIFIED: "[??]",
    Status.BUILD_ERROR: "[!!]",
    Status.STUCK: "[XX]",
    Status.SKIPPED: "[--]",
}


def glyph(status: Status) -> str:
    return STATUS_GLYPHS[status]


def format_summary_line(snapshot: SchedulerSnapshot) -> str:
    """One line: progress plus counts for every status that occurs."""
    counts = snapshot.counts()
    total = len(snapshot.units)
    verified = counts[Status.VERIFIED.value]
    pct = (verified / total * 100) if total else 0
    parts = [f"{verified}/{total} verified ({pct:.0f}%)"]
    for status in Status:
        if status != Status.VERIFIED and counts[status.value]:
            parts.append(f"{counts[status.value]} {status.value}")
    parts.append(f"{len(snapshot.ready)} ready")
    return ", ".join(parts)


def render_status_table(snapshot: SchedulerSnapshot) -> str:
    """Every unit with its glyph, attempt count and dependencies."""
    lines = [format_summary_line(snapshot), ""]
    width = max((len(u.id) for u in snapshot.units), default=0)
    for u in snapshot.units:
        line = f"  {glyph(u.status)} {u.id:<{width}}"
        if u.display_name and u.display_name != u.id:
            line += f"  {u.display_name}"
        if u.attempt_count:
            line += f"  ({u.attempt_count} attempt{'s' if u.attempt_count != 1 else ''})"
        if u.dependency_ids:
            line += f"  <- {', '.join(u.dependency_ids)}"
        lines.append(line)
    return "\n".join(lines)


def render_readiness(snapshot: SchedulerSnapshot) -> str:
    lines = [f"Ready ({len(snapshot.ready)}):"]
    if snapshot.ready:
        lines.extend(f"  {uid}" for uid in snapshot.ready)
    else:
        lines.append("  (none)")
    lines.append("")
    lines.append(f"Blocked ({len(snapshot.blocked)}):")
    if snapshot.blocked:
        for uid in sorted(snapshot.blocked):
            lines.append(f"  {uid}  waiting on: {', '.join(snapshot.blocked[uid])}")
    else:
        lines.append("  (none)")
    return "\n".join(lines)


def render_ranking(ranked: Sequence[RankedUnit]) -> str:
    """Ranked candidate table: leverage desc, risk asc, complexity asc."""
    if not ranked:
        return "No ready units."
    width = max(len(r.unit_id) for r in ranked)
    lines = [
        f"  {'#':>3}  {'unit':<{width}}  leverage  risk  complexity",
    ]
    for r in ranked:
        lines.append(
            f"  {r.position:>3}  {r.unit_id:<{width}}  {r.leverage:>8}  {r.risk:>4}  {r.complexity:>10}"
        )
    return "\n".join(lines)


def render_history(
    unit_id: str,
    status: Status,
    records: Sequence[AttemptRecord],
    decisions: Sequence[DecisionRecord] = (),
) -> str:
    lines = [f"{glyph(status)} {unit_id}: {len(records)} attempt(s)"]
    answered = _pair_decisions(records, decisions)
    for i, r in enumerate(records):
        line = f"  #{r.attempt_number} {r.outcome_kind.value}"
        if i in answered:
            line += f" → {answered[i].decision}"
        if r.timestamp:
            line += f"  [{r.timestamp[:19]}]"
        lines.append(line)
        if r.feedback_in:
            lines.append(f"      feedback: {_first_line(r.feedback_in)}")
        if r.proposal_out:
            lines.append(f"      output:   {_first_line(r.proposal_out)}")
    return "\n".join(lines)


def render_results(results: Sequence[LoopResult]) -> str:
    if not results:
        return "No units were attempted."
    lines = []
    for r in results:
        line = f"  {glyph(r.status)} {r.unit_id}  {r.attempts} attempt(s)"
        if r.failure is not None:
            line += f"  {r.failure}"
        lines.append(line)
    return "\n".join(lines)


def _first_line(text: str, limit: int = 100) -> str:
    first = text.strip().splitlines()[0] if text.strip() else ""
    return first if len(first) <= limit else first[:limit] + "..."


def _pair_decisions(
    records: Sequence[AttemptRecord],
    decisions: Sequence[DecisionRecord],
) -> dict[int, DecisionRecord]:
    """Match each decision to the record it answered (record index -> decision).

    Both logs are in order and attempt numbers restart after a reset, so a
    decision belongs to the record with its number that precedes it in time.
    """
    paired: dict[int, DecisionRecord] = {}
    pending = list(decisions)
    for i, r in enumerate(records):
        if not pending or pending[0].attempt_number != r.attempt_number:
            continue
        following = records[i + 1] if i + 1 < len(records) else None
        if following is None or pending[0].timestamp <= following.timestamp:
            paired[i] = pending.pop(0)
    return paired

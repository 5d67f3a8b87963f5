from __future__ import annotations

import statistics
from collections.abc import Sequence

from app.db.models.live_participants import ParticipantDocument
from app.db.models.live_sessions import SessionDocument
from app.game.modes.rules import CardMatchRules, resolve_game_kind
from app.game.patterns.library import PATTERN_FAMILY_LINE
from app.game.sessions.constants import SESSION_PHASE_COMPLETED
from app.game.sessions.errors import SessionNotCompletedError
from app.game.sessions.transitions import active_participants
from app.game.sessions.types import Award, AwardRecipient, ParticipantReport, SessionAwards

TOP_PERFORMERS_LIMIT = 3
SPEED_DEMON_MIN_ACCURACY = 80.0
EXPERT_MIN_ACCURACY = 90.0
STREAK_AWARD_MIN = 3
PHOTO_FINISH_MAX_MARGIN = 100
CONSISTENT_MIN_ANSWERS = 5
CONSISTENT_MIN_ACCURACY = 60.0
CONSISTENT_MAX_STDDEV_SECONDS = 10.0
FULL_CARD_PATTERN = "full_card"


def build_participant_report(
    session: SessionDocument,
    participant: ParticipantDocument,
) -> ParticipantReport:
    """Frozen per-participant snapshot; only available after the session ends."""
    if session.phase != SESSION_PHASE_COMPLETED:
        raise SessionNotCompletedError
    answered = len(participant.answer_log)
    correct = sum(1 for record in participant.answer_log if record.correct)
    elapsed = [record.elapsed_seconds for record in participant.answer_log]
    time_to_first_pattern = None
    if participant.first_pattern_ms is not None and session.anchor_ms is not None:
        time_to_first_pattern = max(0, participant.first_pattern_ms - session.anchor_ms) / 1000
    return ParticipantReport(
        participant_id=participant.id,
        display_name=participant.display_name,
        score=participant.score,
        accuracy_percent=round(correct * 100 / answered, 1) if answered else 0.0,
        answered_count=answered,
        correct_count=correct,
        average_elapsed_seconds=round(statistics.fmean(elapsed), 2) if elapsed else 0.0,
        best_streak=participant.best_streak,
        winnings=participant.winnings,
        completed_patterns=tuple(participant.completed_patterns),
        answer_log=tuple(record.model_copy() for record in participant.answer_log),
        time_to_first_pattern_seconds=time_to_first_pattern,
    )


def _elapsed_stddev(report: ParticipantReport) -> float:
    elapsed = [record.elapsed_seconds for record in report.answer_log]
    if len(elapsed) < 2:
        return 0.0
    return statistics.pstdev(elapsed)


def _recipient(report: ParticipantReport, value: str | int, rank: int | None = None) -> AwardRecipient:
    return AwardRecipient(
        participant_id=report.participant_id,
        display_name=report.display_name,
        value=value,
        rank=rank,
    )


def _top_performers(reports: Sequence[ParticipantReport]) -> tuple[AwardRecipient, ...]:
    return tuple(
        _recipient(report, report.score, rank=index + 1)
        for index, report in enumerate(reports[:TOP_PERFORMERS_LIMIT])
    )


def _item_awards(reports: Sequence[ParticipantReport]) -> list[Award]:
    awards: list[Award] = []
    attempted = [report for report in reports if report.answered_count > 0]

    perfect = [report for report in attempted if report.accuracy_percent == 100.0]
    if perfect:
        awards.append(
            Award(
                code="perfect-score",
                name="Perfect Score",
                description="Answered every question correctly",
                recipients=tuple(_recipient(report, "100%") for report in perfect),
            )
        )

    accurate = [report for report in attempted if report.accuracy_percent >= SPEED_DEMON_MIN_ACCURACY]
    if accurate:
        fastest = min(accurate, key=lambda report: report.average_elapsed_seconds)
        awards.append(
            Award(
                code="speed-demon",
                name="Speed Demon",
                description="Fastest average response time with 80%+ accuracy",
                recipients=(_recipient(fastest, f"{fastest.average_elapsed_seconds:.1f}s avg"),),
            )
        )

    awards.extend(_streak_award(reports, code="streak-master", name="Streak Master"))

    if len(reports) >= 2:
        margin = reports[0].score - reports[1].score
        if 0 < margin <= PHOTO_FINISH_MAX_MARGIN:
            awards.append(
                Award(
                    code="photo-finish",
                    name="Photo Finish",
                    description="Won by the narrowest margin",
                    recipients=(_recipient(reports[0], f"Won by {margin} pts"),),
                )
            )

    steady = [
        report
        for report in attempted
        if report.answered_count >= CONSISTENT_MIN_ANSWERS
        and report.accuracy_percent >= CONSISTENT_MIN_ACCURACY
    ]
    if steady:
        most_consistent = min(steady, key=_elapsed_stddev)
        spread = _elapsed_stddev(most_consistent)
        if spread < CONSISTENT_MAX_STDDEV_SECONDS:
            awards.append(
                Award(
                    code="consistent-performer",
                    name="Consistent Performer",
                    description="Most consistent response timing",
                    recipients=(_recipient(most_consistent, f"+/-{spread:.1f}s"),),
                )
            )

    experts = [
        report for report in attempted if EXPERT_MIN_ACCURACY <= report.accuracy_percent < 100.0
    ]
    if experts:
        awards.append(
            Award(
                code="knowledge-expert",
                name="Knowledge Expert",
                description="Achieved 90%+ accuracy",
                recipients=tuple(
                    _recipient(report, f"{report.accuracy_percent:.0f}%") for report in experts
                ),
            )
        )
    return awards


def _streak_award(reports: Sequence[ParticipantReport], *, code: str, name: str) -> list[Award]:
    if not reports:
        return []
    longest = max(report.best_streak for report in reports)
    if longest < STREAK_AWARD_MIN:
        return []
    return [
        Award(
            code=code,
            name=name,
            description="Longest streak of consecutive correct answers",
            recipients=tuple(
                _recipient(report, f"{report.best_streak} streak")
                for report in reports
                if report.best_streak == longest
            ),
        )
    ]


def _card_awards(
    session: SessionDocument,
    rules: CardMatchRules,
    reports: Sequence[ParticipantReport],
) -> list[Award]:
    awards: list[Award] = []
    winners = [
        report for report in reports if rules.is_won(session.content, report.completed_patterns)
    ]
    if winners:
        champion = max(winners, key=lambda report: report.score)
        awards.append(
            Award(
                code="card-champion",
                name="Card Champion",
                description="Highest score among card winners",
                recipients=(_recipient(champion, f"{champion.score} pts"),),
            )
        )

    timed = [
        report
        for report in reports
        if report.time_to_first_pattern_seconds is not None and report.time_to_first_pattern_seconds > 0
    ]
    if timed:
        fastest = min(timed, key=lambda report: report.time_to_first_pattern_seconds or 0.0)
        seconds = int(fastest.time_to_first_pattern_seconds or 0)
        minutes, seconds = divmod(seconds, 60)
        awards.append(
            Award(
                code="speed-card",
                name="Speed Card",
                description="Fastest to complete a pattern",
                recipients=(_recipient(fastest, f"{minutes}m {seconds}s" if minutes else f"{seconds}s"),),
            )
        )

    full_cards = [report for report in reports if FULL_CARD_PATTERN in report.completed_patterns]
    if full_cards:
        awards.append(
            Award(
                code="full-card",
                name="Full Card",
                description="Marked every cell on the card",
                recipients=tuple(_recipient(report, "full card") for report in full_cards),
            )
        )

    line_names = {
        pattern.name for pattern in rules.pattern_library(session.content) if pattern.family == PATTERN_FAMILY_LINE
    }
    line_counts = {
        report.participant_id: sum(1 for name in report.completed_patterns if name in line_names)
        for report in reports
    }
    most_lines = max(line_counts.values(), default=0)
    if most_lines >= 1:
        awards.append(
            Award(
                code="pattern-master",
                name="Pattern Master",
                description="Most lines completed",
                recipients=tuple(
                    _recipient(report, f"{most_lines} line{'s' if most_lines != 1 else ''}")
                    for report in reports
                    if line_counts[report.participant_id] == most_lines
                ),
            )
        )

    awards.extend(_streak_award(reports, code="streak-star", name="Streak Star"))
    return awards


def calculate_session_awards(
    session: SessionDocument,
    participants: Sequence[ParticipantDocument],
) -> SessionAwards:
    reports = [
        build_participant_report(session, participant)
        for participant in active_participants(session, participants)
    ]
    if not reports:
        return SessionAwards()
    reports.sort(key=lambda report: (-report.score, report.display_name.lower()))

    rules = resolve_game_kind(session.game_kind)
    if isinstance(rules, CardMatchRules):
        awards = _card_awards(session, rules, reports)
    else:
        awards = _item_awards(reports)
    return SessionAwards(awards=tuple(awards), top_performers=_top_performers(reports))

import csv
import io
import json
import uuid
import asyncio
import logging
from collections import Counter, defaultdict, deque
from datetime import datetime, timedelta
from typing import Any, Callable, Deque, Dict, Iterable, List, Optional
from rapidfuzz import fuzz
from export_assistant.core.config import Settings, settings as default_settings
from export_assistant.core.locks import KeyedLocks
from export_assistant.repositories.base import ANALYTICS_EVENTS, PersistenceStore
from export_assistant.schemas.analytics import (
    AccuracyMetrics, AnalyticsEvent, DailyMetrics, Dashboard, DropOffPoint, EventKind,
    IntentCount, Overview, TaskMetrics, TimeRange, TopIssue, UserInteractionPattern,
)
from export_assistant.schemas.base import utc_now
from export_assistant.schemas.context import UserContext
from export_assistant.schemas.conversation import Intent, Message
from export_assistant.schemas.response import AssistantResponse, UserFeedback

logger = logging.getLogger("analytics_service")

FEEDBACK_PROMPTS = {
    "helpful": "Was this response helpful?",
    "rating": "How would you rate this interaction?",
    "comment": "Did I understand your question correctly?",
    "goal": "Was I able to help you accomplish your goal?",
}
FEEDBACK_CONFIG = {"enable_rating": True, "enable_comments": True, "rating_scale": 5}

ISSUE_CATEGORIES = [
    ("Understanding Issues", ["understand", "confus"]),
    ("Performance Issues", ["slow", "time"]),
    ("Accuracy Issues", ["wrong", "incorrect"]),
]
ISSUE_MATCH_THRESHOLD = 80

CSV_COLUMNS = ["id", "user_id", "conversation_id", "timestamp", "kind", "session_id", "payload"]


def confidence_bucket(confidence: float) -> str:
    if confidence >= 0.8:
        return "high"
    if confidence >= 0.6:
        return "medium"
    return "low"


def time_slot(hour: int) -> str:
    if hour < 6:
        return "night"
    if hour < 12:
        return "morning"
    if hour < 18:
        return "afternoon"
    return "evening"


def categorize_issue(comment: str) -> str:
    lowered = comment.lower()
    for issue, keywords in ISSUE_CATEGORIES:
        if any(fuzz.partial_ratio(keyword, lowered) >= ISSUE_MATCH_THRESHOLD for keyword in keywords):
            return issue
    return "Other Issues"


def _percent(part: int, whole: int) -> float:
    return part / whole * 100 if whole else 0.0


def _mean(values: List[float]) -> float:
    return sum(values) / len(values) if values else 0.0


def _session_lengths(events: Iterable[AnalyticsEvent]) -> List[float]:
    """Span in milliseconds between the first and last event of every session."""
    sessions: Dict[str, List[datetime]] = defaultdict(list)
    for event in events:
        sessions[event.session_id].append(event.timestamp)
    return [(max(times) - min(times)).total_seconds() * 1000 for times in sessions.values()]


class AnalyticsService:
    """Append-only interaction telemetry with rollup queries.

    Events are held per user in memory, capped at `analytics_max_events_per_user`
    (oldest dropped first), and written through to the persistence store. A
    background task prunes events older than the retention window.
    """

    def __init__(
        self,
        store: PersistenceStore,
        config: Settings = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.store = store
        self.config = config or default_settings
        self.clock = clock
        self.max_events_per_user = self.config.analytics_max_events_per_user
        self.retention = timedelta(days=self.config.analytics_retention_days)
        self.events: Dict[str, Deque[AnalyticsEvent]] = {}
        self._locks = KeyedLocks()
        self._cleanup_task: Optional[asyncio.Task] = None

    async def load(self) -> int:
        """Hydrate the per-user event buffers from the store. Returns the number of events loaded."""
        try:
            records = await self.store.load_all(ANALYTICS_EVENTS)
        except Exception as e:
            logger.warning(f"Could not load stored analytics events: {e}")
            return 0
        by_user: Dict[str, List[AnalyticsEvent]] = defaultdict(list)
        for record in records:
            event = AnalyticsEvent.model_validate(record)
            by_user[event.user_id].append(event)
        loaded = 0
        for user_id, stored in by_user.items():
            if user_id in self.events:
                continue
            events = deque(sorted(stored, key=lambda e: e.timestamp), maxlen=self.max_events_per_user)
            self.events[user_id] = events
            loaded += len(events)
        logger.info(f"Loaded {loaded} analytics events for {len(by_user)} users")
        return loaded

    async def start(self) -> None:
        await self.load()
        self._cleanup_task = asyncio.create_task(self._cleanup_loop())
        logger.info("Analytics cleanup started")

    async def stop(self) -> None:
        if self._cleanup_task:
            self._cleanup_task.cancel()
            try:
                await self._cleanup_task
            except asyncio.CancelledError:
                pass
        logger.info("Analytics cleanup stopped")

    async def _cleanup_loop(self) -> None:
        while True:
            await asyncio.sleep(self.config.analytics_cleanup_interval_seconds)
            await self.cleanup_expired()

    # Recording

    async def _user_events(self, user_id: str) -> Deque[AnalyticsEvent]:
        events = self.events.get(user_id)
        if events is not None:
            return events
        events = deque(maxlen=self.max_events_per_user)
        try:
            records = await self.store.load_by_user_id(ANALYTICS_EVENTS, user_id)
            stored = [AnalyticsEvent.model_validate(r) for r in records]
            events.extend(sorted(stored, key=lambda e: e.timestamp))
        except Exception as e:
            logger.warning(f"Could not load stored events for {user_id}: {e}")
        self.events[user_id] = events
        return events

    async def record(self, event: AnalyticsEvent) -> None:
        """Append one event. Never raises."""
        try:
            async with self._locks(event.user_id):
                events = await self._user_events(event.user_id)
                events.append(event)
                record = event.model_dump(mode="json")
                record["timestamp_ms"] = event.timestamp.timestamp() * 1000
                await self.store.save(ANALYTICS_EVENTS, record, key_field="id")
        except Exception as e:
            logger.error(f"Failed to record {event.kind.value} event for {event.user_id}: {e}")

    async def _track(self, kind: EventKind, user_id: str, conversation_id: str, session_id: str,
                     payload: Dict[str, Any], context: Optional[UserContext] = None,
                     timestamp: Optional[datetime] = None) -> Optional[AnalyticsEvent]:
        if context is not None and not context.preferences.data_privacy.allow_analytics:
            return None
        event = AnalyticsEvent(
            id=str(uuid.uuid4()),
            user_id=user_id,
            conversation_id=conversation_id,
            timestamp=timestamp or self.clock(),
            kind=kind,
            payload=payload,
            session_id=session_id,
        )
        await self.record(event)
        return event

    def _fallback_session(self, user_id: str) -> str:
        return f"{user_id}_{int(self.clock().timestamp() * 1000)}"

    async def track_message(self, message: Message, context: UserContext,
                            intent: Optional[Intent] = None) -> Optional[AnalyticsEvent]:
        return await self._track(
            EventKind.MESSAGE_SENT, message.user_id, message.conversation_id, context.session_id,
            {
                "message_length": len(message.text),
                "intent": intent.name.value if intent else None,
                "intent_confidence": intent.confidence if intent else None,
                "entities": [{"type": e.type.value, "confidence": e.confidence} for e in intent.entities]
                if intent else [],
                "session_page": context.current_session.current_page,
                "user_experience": context.business_profile.experience_level,
            },
            context,
            message.timestamp,
        )

    async def track_response(self, response: AssistantResponse, context: UserContext, response_time_ms: float,
                             intent: Optional[Intent] = None) -> Optional[AnalyticsEvent]:
        return await self._track(
            EventKind.RESPONSE_GENERATED, context.user_id, context.conversation_id, context.session_id,
            {
                "response_id": response.id,
                "response_length": len(response.text),
                "response_time": response_time_ms,
                "has_quick_actions": bool(response.quick_actions),
                "quick_action_count": len(response.quick_actions),
                "has_data_visualization": response.data_visualization is not None,
                "has_navigation_hint": response.navigation_hint is not None,
                "follow_up_question_count": len(response.follow_up_questions),
                "intent": intent.name.value if intent else None,
                "intent_confidence": intent.confidence if intent else None,
            },
            context,
            response.timestamp,
        )

    async def track_quick_action(self, action_id: str, action_type: str, user_id: str, conversation_id: str,
                                 context: Optional[UserContext] = None) -> Optional[AnalyticsEvent]:
        return await self._track(
            EventKind.ACTION_CLICKED, user_id, conversation_id,
            context.session_id if context else "unknown",
            {
                "action_id": action_id,
                "action_type": action_type,
                "session_page": context.current_session.current_page if context else None,
            },
            context,
        )

    async def track_navigation(self, from_page: str, to_page: str, user_id: str, conversation_id: str,
                               trigger: str = "user",
                               context: Optional[UserContext] = None) -> Optional[AnalyticsEvent]:
        return await self._track(
            EventKind.NAVIGATION, user_id, conversation_id,
            context.session_id if context else self._fallback_session(user_id),
            {
                "from_page": from_page,
                "to_page": to_page,
                "trigger": trigger,
                "navigation_path": f"{from_page} -> {to_page}",
            },
            context,
        )

    async def track_feedback(self, feedback: UserFeedback, message_id: str, user_id: str, conversation_id: str,
                             intent: Optional[Intent] = None,
                             context: Optional[UserContext] = None) -> Optional[AnalyticsEvent]:
        if feedback.rating >= 4:
            feedback_type = "positive"
        elif feedback.rating <= 2:
            feedback_type = "negative"
        else:
            feedback_type = "neutral"
        return await self._track(
            EventKind.FEEDBACK_GIVEN, user_id, conversation_id,
            context.session_id if context else self._fallback_session(user_id),
            {
                "message_id": message_id,
                "rating": feedback.rating,
                "helpful": feedback.helpful,
                "comment": feedback.comment,
                "feedback_type": feedback_type,
                "intent": intent.name.value if intent else None,
            },
            context,
            feedback.timestamp,
        )

    async def track_task(self, task_type: str, task_id: str, completed: bool, time_to_complete: float,
                         user_id: str, conversation_id: str,
                         context: Optional[UserContext] = None) -> Optional[AnalyticsEvent]:
        return await self._track(
            EventKind.TASK_COMPLETED, user_id, conversation_id,
            context.session_id if context else self._fallback_session(user_id),
            {
                "task_type": task_type,
                "task_id": task_id,
                "completed": completed,
                "time_to_complete": time_to_complete,
            },
            context,
        )

    # Queries

    def _all_events(self, user_id: Optional[str] = None) -> List[AnalyticsEvent]:
        if user_id is not None:
            return list(self.events.get(user_id, ()))
        return [event for events in self.events.values() for event in events]

    def _filtered(self, kind: Optional[EventKind] = None, user_id: Optional[str] = None,
                  time_range: Optional[TimeRange] = None) -> List[AnalyticsEvent]:
        events = self._all_events(user_id)
        if kind is not None:
            events = [e for e in events if e.kind == kind]
        if time_range is not None:
            events = [e for e in events if time_range.contains(e.timestamp)]
        return events

    def response_accuracy(self, user_id: Optional[str] = None,
                          time_range: Optional[TimeRange] = None) -> AccuracyMetrics:
        try:
            feedback = self._filtered(EventKind.FEEDBACK_GIVEN, user_id, time_range)
            responses = self._filtered(EventKind.RESPONSE_GENERATED, user_id, time_range)
            helpful = sum(1 for e in feedback if e.payload.get("helpful"))
            ratings = [e.payload["rating"] for e in feedback if e.payload.get("rating") is not None]

            distribution: Counter = Counter()
            for event in responses:
                confidence = event.payload.get("intent_confidence")
                if confidence is not None:
                    distribution[confidence_bucket(confidence)] += 1

            by_intent: Dict[str, List[bool]] = defaultdict(list)
            for event in feedback:
                intent = event.payload.get("intent")
                if intent:
                    by_intent[intent].append(bool(event.payload.get("helpful")))

            return AccuracyMetrics(
                total_responses=len(responses),
                helpful_responses=helpful,
                unhelpful_responses=len(feedback) - helpful,
                average_rating=_mean(ratings),
                accuracy_rate=_percent(helpful, len(feedback)),
                confidence_distribution=dict(distribution),
                intent_accuracy={
                    intent: _percent(sum(outcomes), len(outcomes)) for intent, outcomes in by_intent.items()
                },
            )
        except Exception as e:
            logger.error(f"Error calculating response accuracy: {e}")
            return AccuracyMetrics()

    def task_completion(self, user_id: Optional[str] = None,
                        time_range: Optional[TimeRange] = None) -> TaskMetrics:
        try:
            tasks = self._filtered(EventKind.TASK_COMPLETED, user_id, time_range)
            completed = [e for e in tasks if e.payload.get("completed")]
            durations = [e.payload["time_to_complete"] for e in completed if e.payload.get("time_to_complete")]

            by_type: Dict[str, List[bool]] = defaultdict(list)
            for event in tasks:
                by_type[event.payload.get("task_type", "unknown")].append(bool(event.payload.get("completed")))

            return TaskMetrics(
                total_tasks=len(tasks),
                completed_tasks=len(completed),
                completion_rate=_percent(len(completed), len(tasks)),
                average_time_to_complete=_mean(durations),
                completion_by_type={t: _percent(sum(o), len(o)) for t, o in by_type.items()},
                drop_off_points=[
                    DropOffPoint(step=t, drop_off_rate=_percent(len(o) - sum(o), len(o)))
                    for t, o in by_type.items()
                ],
            )
        except Exception as e:
            logger.error(f"Error calculating task completion: {e}")
            return TaskMetrics()

    def interaction_patterns(self, user_id: Optional[str] = None) -> List[UserInteractionPattern]:
        try:
            by_user: Dict[str, List[AnalyticsEvent]] = defaultdict(list)
            for event in self._all_events(user_id):
                by_user[event.user_id].append(event)
            return [self._user_pattern(uid, events) for uid, events in by_user.items()]
        except Exception as e:
            logger.error(f"Error calculating interaction patterns: {e}")
            return []

    @staticmethod
    def _user_pattern(user_id: str, events: List[AnalyticsEvent]) -> UserInteractionPattern:
        messages = [e for e in events if e.kind == EventKind.MESSAGE_SENT]
        intents = Counter(e.payload["intent"] for e in messages if e.payload.get("intent"))
        actions = Counter(
            e.payload["action_type"] for e in events
            if e.kind == EventKind.ACTION_CLICKED and e.payload.get("action_type")
        )
        return UserInteractionPattern(
            user_id=user_id,
            total_sessions=len({e.session_id for e in events}),
            total_messages=len(messages),
            average_session_length=_mean(_session_lengths(events)),
            most_used_intents=[IntentCount(intent=i, count=c) for i, c in intents.most_common(5)],
            preferred_features=[a for a, _ in actions.most_common(3)],
            time_of_day=dict(Counter(time_slot(e.timestamp.hour) for e in events)),
        )

    def dashboard(self, time_range: Optional[TimeRange] = None) -> Dashboard:
        try:
            events = self._filtered(time_range=time_range)
            responses = self.response_accuracy(time_range=time_range)
            tasks = self.task_completion(time_range=time_range)
            return Dashboard(
                overview=Overview(
                    total_users=len({e.user_id for e in events}),
                    total_conversations=len({e.conversation_id for e in events}),
                    total_messages=sum(1 for e in events if e.kind == EventKind.MESSAGE_SENT),
                    average_session_length=_mean(_session_lengths(events)),
                    retention_rate=self._retention_rate(events),
                ),
                response_metrics=responses,
                task_metrics=tasks,
                user_patterns=self.interaction_patterns(),
                top_issues=self._top_issues(events),
                improvement_suggestions=self._improvement_suggestions(responses, tasks),
                time_series=self._time_series(events),
                time_range=time_range,
            )
        except Exception as e:
            logger.error(f"Error building analytics dashboard: {e}")
            return Dashboard(time_range=time_range)

    @staticmethod
    def _retention_rate(events: List[AnalyticsEvent]) -> float:
        sessions: Dict[str, set] = defaultdict(set)
        for event in events:
            sessions[event.user_id].add(event.session_id)
        returning = sum(1 for ids in sessions.values() if len(ids) > 1)
        return _percent(returning, len(sessions))

    @staticmethod
    def _top_issues(events: List[AnalyticsEvent]) -> List[TopIssue]:
        counts = Counter(
            categorize_issue(e.payload["comment"]) for e in events
            if e.kind == EventKind.FEEDBACK_GIVEN and not e.payload.get("helpful") and e.payload.get("comment")
        )
        issues = []
        for issue, frequency in counts.most_common(5):
            if frequency > 10:
                impact = "high"
            elif frequency > 5:
                impact = "medium"
            else:
                impact = "low"
            issues.append(TopIssue(issue=issue, frequency=frequency, impact=impact))
        return issues

    @staticmethod
    def _improvement_suggestions(responses: AccuracyMetrics, tasks: TaskMetrics) -> List[str]:
        suggestions = []
        if responses.accuracy_rate < 70:
            suggestions.append("Improve intent recognition accuracy through better training data")
        if responses.average_rating < 3.5:
            suggestions.append("Enhance response quality and relevance")
        if tasks.completion_rate < 60:
            suggestions.append("Simplify task flows and provide better guidance")
        if any(count > 50 for count in responses.confidence_distribution.values()):
            suggestions.append("Review low-confidence responses and improve training")
        return suggestions

    @staticmethod
    def _time_series(events: List[AnalyticsEvent]) -> List[DailyMetrics]:
        days: Dict[str, Counter] = defaultdict(Counter)
        for event in events:
            day = days[event.timestamp.date().isoformat()]
            day["total_events"] += 1
            day[event.kind.value] += 1
        return [
            DailyMetrics(date=date, metrics={
                "total_events": counts["total_events"],
                "messages": counts[EventKind.MESSAGE_SENT.value],
                "responses": counts[EventKind.RESPONSE_GENERATED.value],
                "feedback": counts[EventKind.FEEDBACK_GIVEN.value],
                "actions": counts[EventKind.ACTION_CLICKED.value],
            })
            for date, counts in sorted(days.items())
        ]

    # Feedback cadence, export and retention

    def message_count(self, user_id: str) -> int:
        return sum(1 for e in self.events.get(user_id, ()) if e.kind == EventKind.MESSAGE_SENT)

    def feedback_prompt(self, user_id: str, prompt_type: str = "helpful") -> Dict[str, Any]:
        """Ask for feedback on every `feedback_collect_after_messages`-th message."""
        count = self.message_count(user_id)
        every = self.config.feedback_collect_after_messages
        if count == 0 or every <= 0 or count % every != 0:
            return {"should_collect": False, "prompt": "", "config": {}}
        return {
            "should_collect": True,
            "prompt": FEEDBACK_PROMPTS.get(prompt_type, FEEDBACK_PROMPTS["helpful"]),
            "config": dict(FEEDBACK_CONFIG),
        }

    def export(self, fmt: str = "json", user_id: Optional[str] = None,
               time_range: Optional[TimeRange] = None) -> str:
        events = sorted(self._filtered(user_id=user_id, time_range=time_range), key=lambda e: e.timestamp)
        if fmt == "csv":
            if not events:
                return ""
            buffer = io.StringIO()
            writer = csv.writer(buffer, lineterminator="\n")
            writer.writerow(CSV_COLUMNS)
            for event in events:
                writer.writerow([
                    event.id,
                    event.user_id,
                    event.conversation_id,
                    event.timestamp.isoformat(),
                    event.kind.value,
                    event.session_id,
                    json.dumps(event.payload),
                ])
            return buffer.getvalue()
        return json.dumps({
            "export_date": self.clock().isoformat(),
            "total_events": len(events),
            "time_range": time_range.model_dump(mode="json") if time_range else None,
            "user_id": user_id,
            "events": [e.model_dump(mode="json") for e in events],
        }, indent=2)

    async def cleanup_expired(self, now: Optional[datetime] = None) -> int:
        """Drop events older than the retention window, in memory and in the store."""
        cutoff = (now or self.clock()) - self.retention
        removed = 0
        for user_id in list(self.events):
            async with self._locks(user_id):
                events = self.events[user_id]
                kept = [e for e in events if e.timestamp >= cutoff]
                removed += len(events) - len(kept)
                if kept:
                    self.events[user_id] = deque(kept, maxlen=self.max_events_per_user)
                else:
                    del self.events[user_id]
        try:
            await self.store.delete_before(ANALYTICS_EVENTS, "timestamp_ms", cutoff.timestamp() * 1000)
        except Exception as e:
            logger.error(f"Failed to prune stored analytics events: {e}")
        if removed:
            logger.info(f"Pruned {removed} analytics events older than {cutoff.isoformat()}")
        return removed

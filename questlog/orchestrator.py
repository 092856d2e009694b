"""
Suggestion orchestrator.

Entry point for the pipeline. For each content unit three paths run
concurrently and independently:

    relevance -> task extraction   ─┐
    relevance -> goal extraction   ─┼─> SuggestionRegistry
    status detection -> collaborator┘

Relevance is computed once and shared by both extraction paths. A path
that fails is recorded and logged; it never cancels the others and never
reaches the caller of ``analyze``.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field, replace
from typing import Optional, Union

from .config import PipelineConfig
from .extractor import SuggestionExtractor
from .oracle import OracleClient, TextOracle
from .registry import SuggestionRegistry
from .relevance import RelevanceMatcher
from .status import StatusTransitionDetector
from .storage import GoalStorage
from .telemetry import DiscardReason, DiscardTracker
from .types import (
    ContentUnit,
    GoalEntity,
    GoalSuggestion,
    RelevanceContext,
    RelevanceResult,
    StatusChangeResult,
    SubGoal,
    TaskSuggestion,
)
from .validator import SchemaValidator

logger = logging.getLogger(__name__)

PATH_TASK = "task"
PATH_GOAL = "goal"
PATH_STATUS = "status"


@dataclass
class AnalysisReport:
    """Per-path outcome of one analysis run."""

    content_id: str
    relevance: list[RelevanceResult] = field(default_factory=list)
    task: Optional[TaskSuggestion] = None
    goal: Optional[GoalSuggestion] = None
    status_change: Optional[StatusChangeResult] = None
    status_applied: bool = False
    status_skipped: bool = False
    failures: dict[str, str] = field(default_factory=dict)

    @property
    def succeeded(self) -> bool:
        return not self.failures


class SuggestionOrchestrator:
    """
    Runs the analysis paths and owns their background tasks.

    Components are passed in explicitly; ``from_config`` builds the
    default set once for a process.
    """

    def __init__(
        self,
        storage: GoalStorage,
        *,
        matcher: RelevanceMatcher,
        extractor: SuggestionExtractor,
        detector: StatusTransitionDetector,
        registry: Optional[SuggestionRegistry] = None,
        config: Optional[PipelineConfig] = None,
        tracker: Optional[DiscardTracker] = None,
        oracle: Optional[TextOracle] = None,
    ):
        self.storage = storage
        self.matcher = matcher
        self.extractor = extractor
        self.detector = detector
        self.tracker = tracker or DiscardTracker()
        self.registry = registry or SuggestionRegistry(self.tracker)
        self.config = config or PipelineConfig()
        self.oracle = oracle
        self._pending: set[asyncio.Task] = set()

    @classmethod
    def from_config(
        cls,
        storage: GoalStorage,
        config: Optional[PipelineConfig] = None,
        *,
        oracle: Optional[TextOracle] = None,
        configure_logging: bool = False,
        log_level: str = "INFO",
    ) -> "SuggestionOrchestrator":
        """
        Build an orchestrator and all of its components.

        Args:
            storage: Goal-storage collaborator.
            config: Pipeline configuration (defaults to ``from_env()``).
            oracle: Text oracle override; defaults to an OracleClient.
            configure_logging: Install file/console handlers for the
                ``questlog`` and ``goals`` loggers.
            log_level: Level used when configuring logging.
        """
        config = config or PipelineConfig.from_env()
        if configure_logging:
            from agent_logging import configure_pipeline_loggers

            configure_pipeline_loggers(log_level=log_level, log_dir=config.state_dir / "logs")

        problems = config.validate()
        if problems:
            raise ValueError(f"Invalid pipeline configuration: {'; '.join(problems)}")

        tracker = DiscardTracker()
        oracle = oracle or OracleClient.from_config(config)
        validator = SchemaValidator(oracle, tracker)
        return cls(
            storage,
            matcher=RelevanceMatcher(oracle, validator, config, tracker),
            extractor=SuggestionExtractor(oracle, validator, config, tracker),
            detector=StatusTransitionDetector(oracle, validator, config, tracker),
            registry=SuggestionRegistry(tracker),
            config=config,
            tracker=tracker,
            oracle=oracle,
        )

    # ------------------------------------------------------------------
    # Analysis
    # ------------------------------------------------------------------

    def analyze(self, content: ContentUnit) -> None:
        """
        Schedule analysis of a content unit and return immediately.

        Must be called from code running on the event loop. Results are
        observed through ``registry.subscribe``.
        """
        task = asyncio.create_task(self._run(content), name=f"questlog-analyze-{content.id}")
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        logger.debug(f"Scheduled analysis for content {content.id}")

    async def _run(self, content: ContentUnit) -> None:
        try:
            await self.analyze_now(content)
        except Exception as e:
            logger.error(f"Analysis of content {content.id} failed: {e}", exc_info=True)

    async def drain(self) -> None:
        """Wait for every scheduled analysis to finish."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    async def _relevance(self, content: ContentUnit, report: AnalysisReport) -> RelevanceContext:
        try:
            goals = await self.storage.list_goals(content.user_id)
            results = await self.matcher.find_relevant(content, goals)
        except Exception as e:
            self.tracker.record(DiscardReason.PATH_FAILED, "orchestrator", f"relevance: {e!r}")
            report.failures["relevance"] = repr(e)
            return RelevanceContext()
        report.relevance = results
        return RelevanceContext(results=tuple(results), goals=tuple(goals))

    async def _task_path(
        self,
        content: ContentUnit,
        relevance: asyncio.Future,
        report: AnalysisReport,
    ) -> None:
        context = await relevance
        suggestion = await self.extractor.extract_task(content, context)
        if suggestion is None:
            return
        report.task = suggestion
        self.registry.add(suggestion)

    async def _goal_path(
        self,
        content: ContentUnit,
        relevance: asyncio.Future,
        report: AnalysisReport,
    ) -> None:
        context = await relevance
        suggestion = await self.extractor.extract_goal(content, context)
        if suggestion is None:
            return
        report.goal = suggestion
        self.registry.add(suggestion)

    async def _status_path(self, content: ContentUnit, report: AnalysisReport) -> None:
        if not self.config.enable_status_updates:
            report.status_skipped = True
            return
        active = await self.storage.list_active_sub_goals(content.user_id)
        change = await self.detector.detect(content, active)
        if change is None:
            return
        report.status_change = change
        await self.storage.update_sub_goal_status(change.sub_goal_id, change.new_status, content.user_id)
        report.status_applied = True
        logger.info(f"Applied status {change.new_status.value} to sub-goal {change.sub_goal_id}")

    async def analyze_now(self, content: ContentUnit) -> AnalysisReport:
        """
        Run all analysis paths for a content unit and wait for them.

        Returns:
            AnalysisReport describing what each path produced. Path
            failures are listed in ``failures`` rather than raised.
        """
        report = AnalysisReport(content_id=content.id)
        logger.info(f"Analyzing content {content.id} ({content.source_kind.value})")

        relevance = asyncio.ensure_future(self._relevance(content, report))
        paths = {
            PATH_TASK: self._task_path(content, relevance, report),
            PATH_GOAL: self._goal_path(content, relevance, report),
            PATH_STATUS: self._status_path(content, report),
        }
        outcomes = await asyncio.gather(*paths.values(), return_exceptions=True)

        for name, outcome in zip(paths, outcomes):
            if isinstance(outcome, asyncio.CancelledError):
                raise outcome
            if isinstance(outcome, BaseException):
                self.tracker.record(DiscardReason.PATH_FAILED, "orchestrator", f"{name}: {outcome!r}")
                report.failures[name] = repr(outcome)

        logger.info(
            f"Analysis of {content.id} done: task={'yes' if report.task else 'no'} "
            f"goal={'yes' if report.goal else 'no'} status={'applied' if report.status_applied else 'none'} "
            f"failures={sorted(report.failures)}"
        )
        return report

    # ------------------------------------------------------------------
    # Suggestion lifecycle
    # ------------------------------------------------------------------

    async def accept(self, suggestion_id: str, user_id: str) -> Union[SubGoal, GoalEntity]:
        """
        Persist a pending suggestion through the collaborator.

        A task goes under its parent goal, or the unassigned bucket. A goal
        is created with each related task under it, then matching
        unassigned sub-goals are moved into it.

        The suggestion leaves the registry only once it is fully persisted.
        If a related task fails to save after the goal exists, the tasks not
        yet saved stay pending as standalone suggestions under the new goal
        and the storage error is raised. A failure while moving unassigned
        sub-goals is logged and recorded, not raised.

        Raises:
            KeyError: No pending suggestion with this id.
        """
        suggestion = self.registry.get(suggestion_id)
        if suggestion is None:
            raise KeyError(f"Suggestion '{suggestion_id}' not found")

        if isinstance(suggestion, TaskSuggestion):
            sub_goal = await self.storage.create_sub_goal(user_id, suggestion, suggestion.parent_goal_id)
            self.registry.remove(suggestion_id)
            logger.info(f"Accepted task suggestion '{suggestion.title}' as sub-goal {sub_goal.id}")
            return sub_goal

        goal = await self.storage.create_goal(user_id, suggestion)
        related = suggestion.related_task_suggestions
        created = 0
        try:
            for task in related:
                await self.storage.create_sub_goal(user_id, task, goal.id)
                created += 1
        except Exception:
            self._requeue_unpersisted(suggestion, goal, related[created:])
            raise
        self.registry.remove(suggestion_id)

        try:
            await self._adopt_unassigned(user_id, goal)
        except Exception as e:
            logger.error(f"Moving unassigned sub-goals into goal {goal.id} failed: {e}", exc_info=True)
            self.tracker.record(DiscardReason.PATH_FAILED, "orchestrator", f"adopt unassigned: {e!r}")
        logger.info(f"Accepted goal suggestion '{suggestion.title}' as goal {goal.id}")
        return goal

    def _requeue_unpersisted(
        self,
        suggestion: GoalSuggestion,
        goal: GoalEntity,
        remaining: tuple[TaskSuggestion, ...],
    ) -> None:
        """Swap a half-persisted goal suggestion for its unsaved tasks, filed under the new goal."""
        self.registry.remove(suggestion.id)
        for task in remaining:
            self.registry.add(replace(task, parent_goal_id=goal.id))
        logger.warning(
            f"Goal {goal.id} saved with {len(suggestion.related_task_suggestions) - len(remaining)} of "
            f"{len(suggestion.related_task_suggestions)} task(s); {len(remaining)} left pending"
        )

    async def _adopt_unassigned(self, user_id: str, goal: GoalEntity) -> int:
        goals = await self.storage.list_goals(user_id)
        bucket = next((g for g in goals if g.is_unassigned), None)
        if bucket is None or not bucket.sub_goals:
            return 0
        to_move = await self.matcher.find_misc_sub_goals_for(goal, bucket)
        if not to_move:
            return 0
        moved = await self.storage.move_sub_goals(user_id, bucket.id, goal.id, to_move)
        logger.info(f"Moved {moved} unassigned sub-goal(s) into goal {goal.id}")
        return moved

    def reject(self, suggestion_id: str) -> bool:
        """Drop a pending suggestion. Returns False if it was not pending."""
        removed = self.registry.remove(suggestion_id)
        if removed is not None:
            logger.info(f"Rejected suggestion: {removed.title}")
        return removed is not None

    async def upgrade(self, suggestion_id: str) -> Optional[GoalSuggestion]:
        """
        Replace a pending task suggestion with an upgraded goal suggestion.

        The task stays pending if the upgrade fails.
        """
        task = self.registry.get(suggestion_id)
        if not isinstance(task, TaskSuggestion):
            logger.warning(f"Cannot upgrade {suggestion_id}: not a pending task suggestion")
            return None

        goal = await self.extractor.upgrade_task_to_goal(task)
        if goal is None:
            return None
        if not self.registry.replace(task.id, goal):
            logger.info(f"Task {task.id} left the registry during upgrade; discarding goal")
            return None
        return goal

    async def close(self) -> None:
        """Wait for pending analyses and release the oracle client."""
        await self.drain()
        close = getattr(self.oracle, "close", None)
        if close is not None:
            await close()

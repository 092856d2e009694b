from __future__ import annotations

pytest_plugins = ("pytest_asyncio",)

from datetime import datetime, timezone

import pytest

from fakes import ScriptedOracle
from questlog.config import PipelineConfig
from questlog.telemetry import DiscardTracker
from questlog.types import (
    ContentUnit,
    GoalEntity,
    SourceKind,
    SubGoal,
    SubGoalStatus,
)


@pytest.fixture
def oracle() -> ScriptedOracle:
    return ScriptedOracle()


@pytest.fixture
def tracker() -> DiscardTracker:
    return DiscardTracker()


@pytest.fixture
def config(tmp_path) -> PipelineConfig:
    return PipelineConfig(state_dir=tmp_path)


@pytest.fixture
def content() -> ContentUnit:
    return ContentUnit(
        text="Finished the login page today",
        source_kind=SourceKind.JOURNAL,
        user_id="user-1",
        created_at=datetime(2025, 3, 14, 9, 30, tzinfo=timezone.utc),
        id="content-1",
    )


@pytest.fixture
def website_goal() -> GoalEntity:
    return GoalEntity(
        id=1,
        title="Launch personal website",
        description="Ship a portfolio site",
        sub_goals=(
            SubGoal(id=5, title="Build login page", status=SubGoalStatus.TODO, parent_goal_id=1),
            SubGoal(id=6, title="Write about page", status=SubGoalStatus.IN_PROGRESS, parent_goal_id=1),
        ),
    )


@pytest.fixture
def misc_bucket() -> GoalEntity:
    return GoalEntity(
        id=2,
        title="Misc",
        is_unassigned=True,
        sub_goals=(
            SubGoal(id=7, title="Buy groceries"),
            SubGoal(id=8, title="Renew passport"),
        ),
    )

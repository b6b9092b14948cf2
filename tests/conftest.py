from __future__ import annotations

import pytest

from selfheal.approval.workflow import ApprovalWorkflow
from selfheal.cache.heal_cache import HealCache
from selfheal.config.schema import HealerConfig
from selfheal.core.healer import HealingEngine
from selfheal.core.metadata import HealContext
from selfheal.guardrails.state import GuardrailState
from selfheal.logging.artifacts import ArtifactManager
from selfheal.logging.audit import HealHistory
from tests.helpers import ScriptedApprovalCallback


@pytest.fixture()
def heal_context():
    return HealContext(feature="Login", scenario="Valid credentials")


@pytest.fixture()
def make_engine(tmp_path, heal_context):
    """Builds a started engine; unspecified collaborators are created fresh per engine."""

    def build(
        driver,
        *,
        config: HealerConfig | None = None,
        state: GuardrailState | None = None,
        cache: HealCache | None = None,
        callback: ScriptedApprovalCallback | None = None,
        approval: ApprovalWorkflow | None = None,
        approval_timeout: float = 5.0,
        reasoning_client=None,
        history: HealHistory | None = None,
        artifacts: ArtifactManager | None = None,
        context: HealContext | None = None,
    ) -> HealingEngine:
        config = config or (state.config if state is not None else HealerConfig())
        state = state or GuardrailState(config)
        workflow = approval or ApprovalWorkflow(callback or ScriptedApprovalCallback(), approval_timeout)
        engine = HealingEngine(
            driver,
            config,
            state=state,
            cache=cache or HealCache(config.cache.enabled),
            approval=workflow,
            reasoning_client=reasoning_client,
            history=history if history is not None else HealHistory(tmp_path / "history"),
            artifacts=artifacts if artifacts is not None else ArtifactManager(tmp_path / "artifacts"),
        )
        return engine.start(context or heal_context)

    return build

"""
Scenario Runner - deterministic replay of scripted action sequences

Responsibilities:
- Drive a fresh ConversationEngine through an ordered list of actions
- Compare each post-state with the step's expectations
- Wait for suggestion fetches to finish (polling the processing flag)
- Report per-step pass/fail, overall status and context preservation

Design principles:
- Reads the engine's structured state and trace, never its log output
- One engine per scenario (scenarios never share state)
- Harness failures (timeouts, bad expectations) are recorded on the step,
  never raised
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from coach.contracts import ActionKind, Phase, SeedData, Stage
from coach.core.conversation_state import ConversationStateSnapshot
from coach.results import ActionResult

logger = logging.getLogger(__name__)

STATUS_PASSED = "PASSED"
STATUS_FAILED = "FAILED"
STATUS_PARTIAL = "PARTIAL"


@dataclass(frozen=True)
class ValidationResult:
    passed: bool
    message: str = ""
    details: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ScenarioStep:
    """
    One scripted action with optional expectations.

    Attributes:
        action: Action name (may deliberately be illegal or unknown)
        payload: Action payload
        expected_phase: Phase required after the action
        expected_stage: Stage required after the action
        expected_step: Step index required after the action
        expect_accepted: Required accepted flag (None = don't care)
        validate: Extra check on the post-state snapshot
    """
    action: str
    payload: Any = None
    expected_phase: Optional[Phase] = None
    expected_stage: Optional[Stage] = None
    expected_step: Optional[int] = None
    expect_accepted: Optional[bool] = None
    validate: Optional[Callable[[ConversationStateSnapshot], ValidationResult]] = None


@dataclass(frozen=True)
class Scenario:
    name: str
    description: str
    steps: Tuple[ScenarioStep, ...]
    seed: Optional[SeedData] = None


@dataclass
class StepReport:
    index: int
    action: str
    payload: Any
    pre_state: ConversationStateSnapshot
    post_state: ConversationStateSnapshot
    quick_replies_before: List[ActionKind]
    result: Optional[ActionResult]
    passed: bool
    failures: List[str] = field(default_factory=list)
    duration_ms: float = 0.0

    def to_json(self) -> dict:
        return {
            'index': self.index,
            'action': self.action,
            'payload': self.payload if isinstance(self.payload, (str, dict, type(None))) else str(self.payload),
            'preState': self.pre_state.position(),
            'postState': self.post_state.position(),
            'quickRepliesBefore': [a.value for a in self.quick_replies_before],
            'accepted': self.result.accepted if self.result else None,
            'error': self.result.error if self.result else None,
            'passed': self.passed,
            'failures': list(self.failures),
            'durationMs': round(self.duration_ms, 2)
        }


@dataclass
class ScenarioReport:
    name: str
    description: str
    steps: List[StepReport]
    status: str
    duration_ms: float
    context_preserved: bool
    big_idea: Optional[str] = None
    impact: Optional[str] = None

    @property
    def total_steps(self) -> int:
        return len(self.steps)

    @property
    def passed_steps(self) -> int:
        return sum(1 for step in self.steps if step.passed)

    @property
    def failed_steps(self) -> int:
        return self.total_steps - self.passed_steps

    @property
    def errors(self) -> List[str]:
        return [f"Step {s.index}: {failure}" for s in self.steps for failure in s.failures]

    def to_json(self) -> dict:
        return {
            'name': self.name,
            'description': self.description,
            'status': self.status,
            'durationMs': round(self.duration_ms, 2),
            'summary': {
                'totalSteps': self.total_steps,
                'passedSteps': self.passed_steps,
                'failedSteps': self.failed_steps,
                'errors': self.errors
            },
            'contextPreservation': {
                'preserved': self.context_preserved,
                'bigIdea': self.big_idea,
                'impact': self.impact
            },
            'steps': [step.to_json() for step in self.steps]
        }


def overall_status(passed: int, total: int) -> str:
    """
    Examples:
        >>> overall_status(3, 3)
        'PASSED'
        >>> overall_status(0, 3)
        'FAILED'
        >>> overall_status(2, 3)
        'PARTIAL'
    """
    if passed == total:
        return STATUS_PASSED
    if passed == 0:
        return STATUS_FAILED
    return STATUS_PARTIAL


class ScenarioRunner:
    """Runs Scenarios against fresh engines built by engine_factory"""

    def __init__(self, engine_factory: Callable[[Optional[SeedData]], Any],
                 poll_interval: float = 0.01, max_wait: float = 5.0):
        """
        Args:
            engine_factory: Callable(seed) -> ConversationEngine
            poll_interval: Seconds between processing-flag polls
            max_wait: Seconds before a step's wait is declared timed out

        Raises:
            ValueError: If poll_interval or max_wait is not positive
        """
        if poll_interval <= 0 or max_wait <= 0:
            raise ValueError("poll_interval and max_wait must be positive")

        self.engine_factory = engine_factory
        self.poll_interval = poll_interval
        self.max_wait = max_wait

    async def _wait_until_idle(self, engine) -> bool:
        """Poll the processing flag; False if max_wait elapsed first"""
        deadline = time.monotonic() + self.max_wait
        while engine.get_state().is_processing:
            if time.monotonic() > deadline:
                return False
            await asyncio.sleep(self.poll_interval)
        return True

    @staticmethod
    def _check_expectations(step: ScenarioStep, result: ActionResult,
                            state: ConversationStateSnapshot) -> List[str]:
        failures = []
        if step.expected_phase is not None and state.phase != Phase(step.expected_phase):
            failures.append(f"expected phase {Phase(step.expected_phase).value}, got {state.phase.value}")
        if step.expected_stage is not None and state.stage != Stage(step.expected_stage):
            failures.append(f"expected stage {Stage(step.expected_stage).value}, got {state.stage.value}")
        if step.expected_step is not None and state.step_index != step.expected_step:
            failures.append(f"expected step {step.expected_step}, got {state.step_index}")
        if step.expect_accepted is not None and result.accepted != step.expect_accepted:
            failures.append(
                f"expected {'acceptance' if step.expect_accepted else 'rejection'}, "
                f"got {'accepted' if result.accepted else 'rejected (' + str(result.error) + ')'}"
            )

        if step.validate is not None:
            try:
                validation = step.validate(state)
            except Exception as e:
                failures.append(f"validator raised {type(e).__name__}: {e}")
            else:
                if not validation.passed:
                    failures.append(validation.message or "validation failed")
        return failures

    async def run(self, scenario: Scenario) -> ScenarioReport:
        """Run one scenario against a fresh engine"""
        engine = self.engine_factory(scenario.seed)
        logger.info(f"Running scenario: {scenario.name} ({len(scenario.steps)} steps)")

        start_time = time.perf_counter()
        step_reports = []

        for index, step in enumerate(scenario.steps, 1):
            step_start = time.perf_counter()
            pre_state = engine.get_state()
            replies_before = engine.get_quick_replies()

            result = await engine.process(step.action, step.payload)
            failures = []
            if not await self._wait_until_idle(engine):
                failures.append(f"timed out after {self.max_wait}s waiting for processing to finish")

            post_state = engine.get_state()
            failures.extend(self._check_expectations(step, result, post_state))

            report = StepReport(
                index=index,
                action=step.action,
                payload=step.payload,
                pre_state=pre_state,
                post_state=post_state,
                quick_replies_before=replies_before,
                result=result,
                passed=not failures,
                failures=failures,
                duration_ms=(time.perf_counter() - step_start) * 1000
            )
            step_reports.append(report)

            if failures:
                logger.warning(f"[{scenario.name}] step {index} ({step.action}) failed: {'; '.join(failures)}")

        final_state = engine.get_state()
        big_idea = final_state.captured_data.get('ideation.bigIdea')
        impact = final_state.captured_data.get('deliverables.impact')
        preserved = bool(big_idea) and bool(impact) and big_idea in impact

        passed = sum(1 for r in step_reports if r.passed)
        status = overall_status(passed, len(step_reports))

        logger.info(f"Scenario {scenario.name}: {status} ({passed}/{len(step_reports)} steps)")

        return ScenarioReport(
            name=scenario.name,
            description=scenario.description,
            steps=step_reports,
            status=status,
            duration_ms=(time.perf_counter() - start_time) * 1000,
            context_preserved=preserved,
            big_idea=big_idea,
            impact=impact
        )

    async def run_all(self, scenarios: Sequence[Scenario] = None) -> List[ScenarioReport]:
        scenarios = DEFAULT_SCENARIOS if scenarios is None else scenarios
        return [await self.run(scenario) for scenario in scenarios]


def format_reports(reports: Sequence[ScenarioReport]) -> str:
    """Plain-text summary for console output"""
    lines = ["=" * 60, "SCENARIO REPORT", "=" * 60]
    for report in reports:
        lines.append(
            f"{report.status:<8} {report.name} "
            f"({report.passed_steps}/{report.total_steps} steps, {report.duration_ms:.0f}ms)"
        )
        lines.append(f"         Context preserved: {'Yes' if report.context_preserved else 'No'}")
        for error in report.errors[:5]:
            lines.append(f"         - {error}")

    totals = {status: sum(1 for r in reports if r.status == status)
              for status in (STATUS_PASSED, STATUS_PARTIAL, STATUS_FAILED)}
    lines.append("-" * 60)
    lines.append(
        f"Total: {len(reports)}  Passed: {totals[STATUS_PASSED]}  "
        f"Partial: {totals[STATUS_PARTIAL]}  Failed: {totals[STATUS_FAILED]}"
    )
    lines.append("=" * 60)
    return "\n".join(lines)


def _big_idea_is(expected: str) -> Callable[[ConversationStateSnapshot], ValidationResult]:
    def check(state: ConversationStateSnapshot) -> ValidationResult:
        actual = state.captured_data.get('ideation.bigIdea')
        return ValidationResult(
            passed=actual == expected,
            message="Impact step should still see the Big Idea from step 1",
            details={'bigIdea': actual}
        )
    return check


def _stage_steps(texts: Sequence[str], last_phase: Phase = Phase.STAGE_CLARIFY) -> List[ScenarioStep]:
    """text/continue pairs for the three steps of a stage"""
    steps = []
    for number, text in enumerate(texts, 1):
        steps.append(ScenarioStep('text', text, expected_phase=Phase.STEP_CONFIRM, expected_step=number))
        if number < len(texts):
            steps.append(ScenarioStep('continue', expected_phase=Phase.STEP_ENTRY, expected_step=number + 1))
        else:
            steps.append(ScenarioStep('continue', expected_phase=last_phase))
    return steps


_HAPPY_PATH = Scenario(
    name="Happy Path - Complete Journey",
    description="All nine steps confirmed without refinements, through to completion",
    seed=SeedData(subject="Science", age_group="Middle School (6-8)", location="Riverside"),
    steps=tuple(
        [
            ScenarioStep('start', expected_phase=Phase.STEP_ENTRY, expected_stage=Stage.IDEATION, expected_step=1),
            ScenarioStep('start', expected_phase=Phase.STEP_ENTRY, expected_step=1),
        ]
        + _stage_steps([
            'Systems and Connections',
            'How do parts work together to create wholes?',
            'Design a solution for local environmental issues',
        ])
        + [
            ScenarioStep('proceed', expected_phase=Phase.STEP_ENTRY, expected_stage=Stage.JOURNEY, expected_step=1),
            ScenarioStep('start', expected_phase=Phase.STEP_ENTRY, expected_step=1),
        ]
        + _stage_steps([
            'Explore, Plan, Create, Share',
            'Research, brainstorming, prototyping, presenting',
            'Books, videos, guest speakers, art supplies',
        ])
        + [
            ScenarioStep('proceed', expected_phase=Phase.STEP_ENTRY,
                         expected_stage=Stage.DELIVERABLES, expected_step=1),
            ScenarioStep('text', 'Research complete, prototype built, presentation ready',
                         expected_phase=Phase.STEP_CONFIRM),
            ScenarioStep('continue', expected_phase=Phase.STEP_ENTRY, expected_step=2),
            ScenarioStep('text', 'Understanding, creativity, teamwork, communication',
                         expected_phase=Phase.STEP_CONFIRM),
            ScenarioStep('continue', expected_phase=Phase.STEP_ENTRY, expected_step=3),
            ScenarioStep('text', 'Community fair showcasing solutions for Systems and Connections',
                         expected_phase=Phase.STEP_CONFIRM,
                         validate=_big_idea_is('Systems and Connections')),
            ScenarioStep('continue', expected_phase=Phase.STAGE_CLARIFY),
            ScenarioStep('proceed', expected_phase=Phase.COMPLETE),
            ScenarioStep('help', expected_phase=Phase.COMPLETE, expect_accepted=False),
        ]
    ),
)

_REFINEMENT_PATH = Scenario(
    name="Refinement Path",
    description="Refine at several steps, including a refine with nothing pending",
    seed=SeedData(subject="Physical Education", age_group="Elementary (K-5)", location="Lakeside"),
    steps=(
        ScenarioStep('start', expected_phase=Phase.STEP_ENTRY, expected_step=1),
        ScenarioStep('text', 'Initial idea', expected_phase=Phase.STEP_CONFIRM),
        ScenarioStep('refine', expected_phase=Phase.STEP_ENTRY, expected_step=1),
        ScenarioStep('text', 'Refined idea - Movement as Expression', expected_phase=Phase.STEP_CONFIRM),
        ScenarioStep('continue', expected_phase=Phase.STEP_ENTRY, expected_step=2),
        ScenarioStep('text', 'Initial question', expected_phase=Phase.STEP_CONFIRM),
        ScenarioStep('refine', expected_phase=Phase.STEP_ENTRY, expected_step=2),
        ScenarioStep('refine', expected_phase=Phase.STEP_ENTRY, expected_step=2, expect_accepted=False),
        ScenarioStep('text', 'How does movement help us express ourselves?', expected_phase=Phase.STEP_CONFIRM),
        ScenarioStep('refine', expected_phase=Phase.STEP_ENTRY, expected_step=2),
        ScenarioStep('text', 'How does movement help us express ourselves?', expected_phase=Phase.STEP_CONFIRM),
        ScenarioStep('continue', expected_phase=Phase.STEP_ENTRY, expected_step=3),
    ),
)

_SUGGESTION_PATH = Scenario(
    name="Ideas and What-If Path",
    description="Fill steps from Ideas and What-If cards",
    seed=SeedData(subject="Physical Education", age_group="Elementary (K-5)", location="Lakeside"),
    steps=(
        ScenarioStep('start', expected_phase=Phase.STEP_ENTRY, expected_step=1),
        ScenarioStep('card_select', {'title': 'Movement as Expression'},
                     expected_phase=Phase.STEP_ENTRY, expect_accepted=False),
        ScenarioStep('ideas', expected_phase=Phase.STEP_ENTRY, expected_step=1),
        ScenarioStep('card_select', {'title': 'Movement as Expression'}, expected_phase=Phase.STEP_CONFIRM),
        ScenarioStep('continue', expected_phase=Phase.STEP_ENTRY, expected_step=2),
        ScenarioStep('whatif', expected_phase=Phase.STEP_ENTRY, expected_step=2),
        ScenarioStep('card_select', {'title': 'What if every student coached a sport?'},
                     expected_phase=Phase.STEP_CONFIRM),
        ScenarioStep('continue', expected_phase=Phase.STEP_ENTRY, expected_step=3,
                     validate=lambda state: ValidationResult(
                         passed=state.captured_data.get('ideation.bigIdea') == 'Movement as Expression',
                         message="Card title should be captured as the Big Idea")),
    ),
)

_HELP_PATH = Scenario(
    name="Help and Recovery Path",
    description="Help in every phase and recovery from empty input",
    steps=(
        ScenarioStep('help', expected_phase=Phase.STAGE_INIT),
        ScenarioStep('start', expected_phase=Phase.STEP_ENTRY, expected_step=1),
        ScenarioStep('help', expected_phase=Phase.STEP_ENTRY, expected_step=1),
        ScenarioStep('text', '', expected_phase=Phase.STEP_ENTRY, expect_accepted=False,
                     validate=lambda state: ValidationResult(
                         passed=not state.captured_data, message="Empty input must not write data")),
        ScenarioStep('text', 'Valid input after error', expected_phase=Phase.STEP_CONFIRM),
        ScenarioStep('help', expected_phase=Phase.STEP_CONFIRM),
        ScenarioStep('dance', expected_phase=Phase.STEP_CONFIRM, expect_accepted=False),
        ScenarioStep('continue', expected_phase=Phase.STEP_ENTRY, expected_step=2),
    ),
)

DEFAULT_SCENARIOS: Tuple[Scenario, ...] = (_HAPPY_PATH, _REFINEMENT_PATH, _SUGGESTION_PATH, _HELP_PATH)

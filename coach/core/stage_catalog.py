"""
Stage Catalog - static description of the three-stage curriculum

Responsibilities:
- Map each (Stage, step) to its prompt, label and canonical captured-data key
- Provide stage introductions, stage recaps, help text and the completion message
- Fill templates from wizard seed data (subject, age group, location)

Design principles:
- Populated once at construction, never mutated afterwards
- Pure lookups: the catalog never writes the Captured-Data Store
- Steps are 1-indexed (user-facing), tuples are 0-indexed (storage):
    index = step - 1
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional, Tuple

from coach.contracts import Stage, SeedData, STAGE_ORDER, STEPS_PER_STAGE

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StepDefinition:
    """
    One step of a stage.

    Attributes:
        step_id: Stable identifier (e.g. 'IDEATION_BIG_IDEA'), used to key
            suggestion tables
        field: Semantic field name; canonical key is '<stage>.<field>'
        label: Human-readable label (e.g. 'Big Idea')
        prompt: Prompt template (str.format fields: subject, age_group,
            location, challenge)
        help: Help template (same fields)
    """
    step_id: str
    field: str
    label: str
    prompt: str
    help: str


@dataclass(frozen=True)
class StageDefinition:
    stage: Stage
    label: str
    intro: str
    recap_title: str
    recap_closing: str
    steps: Tuple[StepDefinition, ...]


_STAGES = (
    StageDefinition(
        stage=Stage.IDEATION,
        label="Ideation",
        intro=(
            "**Welcome to the Ideation Stage**\n\n"
            "We'll establish the conceptual framework for your learning experience "
            "through three connected components:\n\n"
            "**1. Big Idea** - a resonant concept that connects content to students' lives\n"
            "**2. Essential Question** - an open-ended inquiry that drives investigation\n"
            "**3. Challenge** - an authentic task with real-world relevance\n\n"
            "Let's begin by identifying your Big Idea."
        ),
        recap_title="**Ideation Stage Complete**",
        recap_closing="Shall we proceed to design the learning journey?",
        steps=(
            StepDefinition(
                step_id="IDEATION_BIG_IDEA",
                field="bigIdea",
                label="Big Idea",
                prompt=(
                    "Let's establish the conceptual anchor for your {subject} learning experience.\n\n"
                    "A Big Idea is a transferable concept that reveals deeper understanding "
                    "and connects {subject} to students' lived experiences.\n\n"
                    "Considering your {age_group} students in {location}, what overarching "
                    "concept could transform their relationship with {subject}?\n\n"
                    "*For instance: \"Systems and Interactions\", \"Patterns of Change\" or "
                    "\"Power and Agency\".*"
                ),
                help=(
                    "**Understanding Big Ideas**\n\n"
                    "A Big Idea unifies the whole learning experience. For {age_group} "
                    "students it should bridge {subject} content with contexts in {location} "
                    "and transfer beyond this unit.\n\n"
                    "The Ideas feature provides suggestions tailored to your context."
                ),
            ),
            StepDefinition(
                step_id="IDEATION_EQ",
                field="essentialQuestion",
                label="Essential Question",
                prompt=(
                    "Now we'll turn your Big Idea into an Essential Question that drives inquiry.\n\n"
                    "Effective Essential Questions resist simple answers and stay relevant "
                    "throughout the project.\n\n"
                    "What question would compel your {age_group} students to think critically "
                    "and creatively?\n\n"
                    "*Strong questions often begin with \"How might we...\", \"To what extent...\" "
                    "or \"Why do...\".*"
                ),
                help=(
                    "**Developing Essential Questions**\n\n"
                    "Essential Questions require higher-order thinking and generate further "
                    "questions rather than a single answer.\n\n"
                    "Reflect: what question about {subject} would sustain investigation "
                    "across the whole unit?"
                ),
            ),
            StepDefinition(
                step_id="IDEATION_CHALLENGE",
                field="challenge",
                label="Challenge",
                prompt=(
                    "Now let's design an authentic challenge that turns inquiry into action.\n\n"
                    "Considering {location} and your students' developmental stage, what "
                    "challenge would show that {subject} knowledge has real-world application?\n\n"
                    "*Formats include \"Develop a solution for...\", \"Create a resource that "
                    "helps...\" or \"Design an intervention to address...\".*"
                ),
                help=(
                    "**Creating Authentic Challenges**\n\n"
                    "Effective challenges for {age_group} students address genuine needs in "
                    "{location} and end in public products valued beyond the classroom."
                ),
            ),
        ),
    ),
    StageDefinition(
        stage=Stage.JOURNEY,
        label="Journey",
        intro=(
            "**Welcome to the Journey Design Stage**\n\n"
            "With the conceptual foundation in place we'll architect the learning progression:\n\n"
            "**1. Phases** - sequencing that builds complexity step by step\n"
            "**2. Activities** - learning experiences that bring each phase to life\n"
            "**3. Resources** - materials and supports that scaffold success\n\n"
            "Shall we begin mapping your learning journey?"
        ),
        recap_title="**Journey Design Complete**",
        recap_closing="Shall we proceed to define assessment criteria and impact measures?",
        steps=(
            StepDefinition(
                step_id="JOURNEY_PHASES",
                field="phases",
                label="Phases",
                prompt=(
                    "Let's design the learning progression for your {age_group} students.\n\n"
                    "How would you sequence this project into 3-4 phases that gradually build "
                    "student capacity while maintaining excitement?\n\n"
                    "*For example: \"Explore & Discover\", \"Plan & Create\", \"Test & Improve\", "
                    "\"Share & Celebrate\".*"
                ),
                help=(
                    "**Designing Learning Phases**\n\n"
                    "{age_group} students benefit from clear structure, frequent celebration "
                    "of progress and a balance of guided and exploratory work."
                ),
            ),
            StepDefinition(
                step_id="JOURNEY_ACTIVITIES",
                field="activities",
                label="Activities",
                prompt=(
                    "Now let's design activities that bring each phase to life.\n\n"
                    "What specific activities will help students develop the skills needed "
                    "for their {challenge}?\n\n"
                    "*Consider games, experiments, building and making, role-play, field "
                    "experiences or peer teaching.*"
                ),
                help=(
                    "**Creating Engaging Activities**\n\n"
                    "The most effective {subject} activities are hands-on, social and offer "
                    "choice within a clear structure."
                ),
            ),
            StepDefinition(
                step_id="JOURNEY_RESOURCES",
                field="resources",
                label="Resources",
                prompt=(
                    "Let's identify the resources that will support student success.\n\n"
                    "What materials, tools and supports will students need to complete their "
                    "activities?\n\n"
                    "*Think about books, videos, guest speakers, technology tools, art supplies "
                    "and community partnerships in {location}.*"
                ),
                help=(
                    "**Selecting Resources**\n\n"
                    "Good resources are multimodal, offer several entry points and connect "
                    "to local {location} contexts where possible."
                ),
            ),
        ),
    ),
    StageDefinition(
        stage=Stage.DELIVERABLES,
        label="Deliverables",
        intro=(
            "**Welcome to the Deliverables Stage**\n\n"
            "In this final stage we'll establish how students demonstrate mastery:\n\n"
            "**1. Milestones** - checkpoints that provide feedback and keep momentum\n"
            "**2. Rubric** - transparent criteria that value process and product\n"
            "**3. Impact Plan** - authentic audiences for student work\n\n"
            "Let's design assessment that inspires excellence."
        ),
        recap_title="**Deliverables Framework Complete**",
        recap_closing="Would you like to review your complete learning blueprint?",
        steps=(
            StepDefinition(
                step_id="DELIVER_MILESTONES",
                field="milestones",
                label="Milestones",
                prompt=(
                    "Let's establish checkpoints that keep {age_group} students motivated.\n\n"
                    "What key milestones will help students track their journey toward "
                    "completing the {challenge}?\n\n"
                    "*Examples: \"Research Complete\", \"Prototype Built\", \"Feedback Gathered\".*"
                ),
                help=(
                    "**Setting Milestones**\n\n"
                    "Frequent, visible milestones maintain momentum. Think about the "
                    "checkpoints on the way to the {challenge}."
                ),
            ),
            StepDefinition(
                step_id="DELIVER_RUBRIC",
                field="rubric",
                label="Rubric",
                prompt=(
                    "Now we'll create success criteria that are clear and motivating.\n\n"
                    "What criteria will help students understand what success looks like for "
                    "their {subject} project?\n\n"
                    "*Consider Understanding, Creativity, Teamwork, Communication.*"
                ),
                help=(
                    "**Creating Student-Friendly Rubrics**\n\n"
                    "Use \"I can\" statements, balance process and product, and recognise "
                    "growth as well as achievement."
                ),
            ),
            StepDefinition(
                step_id="DELIVER_IMPACT",
                field="impact",
                label="Impact Plan",
                prompt=(
                    "Finally, let's design how students will share their work with "
                    "authentic audiences.\n\n"
                    "How will students share their {challenge} to make a real difference?\n\n"
                    "*Ideas: school assembly, community fair, video documentary, family "
                    "showcase night.*"
                ),
                help=(
                    "**Planning Authentic Impact**\n\n"
                    "Meaningful impact connects students' {subject} work to audiences they "
                    "care about in {location}."
                ),
            ),
        ),
    ),
)

COMPLETION_MESSAGE = (
    "**Congratulations!** You've designed a complete learning blueprint.\n\n"
    "Your plan integrates an authentic challenge, a scaffolded learning journey "
    "and meaningful assessment. Would you like to review your blueprint?"
)

CONFIRMATION_TEMPLATE = (
    "Thank you. Let me confirm your {label}:\n\n"
    "**{value}**\n\n"
    "Does this capture your vision? Select 'Continue' to move on or 'Refine' to rework it."
)

GENERIC_HELP = (
    "**Here to Help!**\n\n"
    "Trust your instincts about what excites your {age_group} students and how "
    "{subject} connects to their world. The Ideas and What-If buttons are always "
    "here when you need inspiration."
)


class StageCatalog:
    """Read-only lookup over the stage/step curriculum"""

    def __init__(self, seed: Optional[SeedData] = None):
        """
        Args:
            seed: Wizard intake data used to fill templates
        """
        self.seed = seed or SeedData()
        self._stages: Dict[Stage, StageDefinition] = {s.stage: s for s in _STAGES}

        # Structural invariants, checked once
        if tuple(self._stages) != STAGE_ORDER:
            raise ValueError("Stage catalog order does not match STAGE_ORDER")
        for definition in _STAGES:
            if len(definition.steps) != STEPS_PER_STAGE:
                raise ValueError(
                    f"Stage {definition.stage.value} must define {STEPS_PER_STAGE} steps"
                )

        logger.debug(f"Stage catalog initialized (subject={self.seed.subject})")

    # ========================
    # Private Helpers
    # ========================

    def _step(self, stage: Stage, step: int) -> StepDefinition:
        """
        Raises:
            ValueError: If step is outside 1..STEPS_PER_STAGE
        """
        if not isinstance(step, int) or step < 1 or step > STEPS_PER_STAGE:
            raise ValueError(f"Step {step} does not exist in stage {Stage(stage).value}")
        return self._stages[Stage(stage)].steps[step - 1]

    def _fields(self, captured: Optional[Mapping[str, Any]]) -> Dict[str, str]:
        captured = captured or {}
        return {
            'subject': self.seed.subject,
            'age_group': self.seed.age_group,
            'location': self.seed.location,
            'challenge': captured.get('ideation.challenge') or 'challenge',
        }

    # ========================
    # Lookups
    # ========================

    def prompt_for(self, stage: Stage, step: int,
                   captured: Optional[Mapping[str, Any]] = None) -> str:
        """
        Prompt text for (stage, step).

        Args:
            stage: Stage
            step: Step number (1-indexed)
            captured: Optional captured-data snapshot; later prompts reference
                earlier answers (e.g. the Challenge) when present

        Returns:
            str: Filled prompt
        """
        return self._step(stage, step).prompt.format(**self._fields(captured))

    def canonical_key_for(self, stage: Stage, step: int) -> str:
        """
        Captured-data key for (stage, step).

        Example:
            >>> StageCatalog().canonical_key_for(Stage.IDEATION, 1)
            'ideation.bigIdea'
        """
        return f"{Stage(stage).key_prefix}.{self._step(stage, step).field}"

    def label_for(self, stage: Stage, step: int) -> str:
        return self._step(stage, step).label

    def step_id_for(self, stage: Stage, step: int) -> str:
        return self._step(stage, step).step_id

    def stage_label(self, stage: Stage) -> str:
        return self._stages[Stage(stage)].label

    def stage_intro(self, stage: Stage) -> str:
        """Message shown when a stage is entered (stage_init)"""
        return self._stages[Stage(stage)].intro

    def stage_recap(self, stage: Stage, captured: Mapping[str, Any]) -> str:
        """
        Recap shown at stage_clarify, listing the stage's confirmed values.

        Missing values render as '*In progress*'.
        """
        definition = self._stages[Stage(stage)]
        lines = [definition.recap_title, ""]
        for step_number in range(1, STEPS_PER_STAGE + 1):
            key = self.canonical_key_for(stage, step_number)
            value = captured.get(key) or "*In progress*"
            lines.append(f"**{self.label_for(stage, step_number)}:** {value}")
        lines.append("")
        lines.append(definition.recap_closing)
        return "\n".join(lines)

    def help_for(self, stage: Stage, step: Optional[int],
                 captured: Optional[Mapping[str, Any]] = None) -> str:
        """
        Contextual guidance. Falls back to generic help when no step is active
        (stage_init) or the step is out of range.
        """
        fields = self._fields(captured)
        if step is None or not 1 <= step <= STEPS_PER_STAGE:
            return GENERIC_HELP.format(**fields)
        return self._step(stage, step).help.format(**fields)

    def confirmation_for(self, stage: Stage, step: int, value: str) -> str:
        return CONFIRMATION_TEMPLATE.format(label=self.label_for(stage, step), value=value)

    def completion_message(self) -> str:
        return COMPLETION_MESSAGE

    def all_keys(self) -> Tuple[str, ...]:
        """Every canonical key, in curriculum order"""
        return tuple(
            self.canonical_key_for(stage, step)
            for stage in STAGE_ORDER
            for step in range(1, STEPS_PER_STAGE + 1)
        )

"""
Suggestion Providers - "Ideas" and "What-If" card content

The engine treats suggestions as an opaque, asynchronous, fallible
dependency. Every provider implements:

    async fetch_suggestions(kind, stage, step, captured) -> List[Card]

Implementations:
- StaticSuggestionProvider: curated tables keyed by subject and step
- LLMSuggestionProvider: prompts a HuggingFace model, parses Title/Description blocks
- FallbackSuggestionProvider: tries a primary provider, answers from a fallback on failure

Error Handling:
- Providers raise SuggestionProviderError (or anything else) on failure
- The engine converts any provider exception into a ProviderFailure result
"""

import asyncio
import logging
import re
from typing import Any, Dict, List, Mapping, Optional, Protocol

from coach.contracts import ActionKind, Card, SeedData, Stage
from coach.core.stage_catalog import StageCatalog
from coach.errors import SuggestionProviderError

logger = logging.getLogger(__name__)

IDEAS = ActionKind.IDEAS.value
WHATIF = ActionKind.WHATIF.value


class SuggestionProvider(Protocol):
    """Interface consumed by ConversationEngine"""

    async def fetch_suggestions(
        self,
        kind: str,
        stage: Stage,
        step: int,
        captured: Mapping[str, Any]
    ) -> List[Card]:
        ...


def _cards(kind: str, rows) -> List[Card]:
    return [
        Card(id=str(index), title=title, description=description, kind=kind)
        for index, (title, description) in enumerate(rows, 1)
    ]


# Subject -> step_id -> (title, description) rows
_IDEA_TABLES: Dict[str, Dict[str, tuple]] = {
    'Physical Education': {
        'IDEATION_BIG_IDEA': (
            ('Movement as Expression', 'How our bodies communicate and create'),
            ('Teamwork and Leadership', 'Building community through collaborative play'),
            ('Healthy Habits for Life', 'Connecting physical activity to wellbeing'),
            ('Games Across Cultures', 'Exploring movement traditions worldwide'),
        ),
    },
    'Science': {
        'IDEATION_BIG_IDEA': (
            ('Patterns in Nature', 'Discovering recurring designs in the natural world'),
            ('Cause and Effect', 'Understanding how actions create reactions'),
            ('Systems Thinking', 'Exploring interconnected relationships'),
            ('Innovation for Good', 'Using science to solve real problems'),
        ),
        'IDEATION_EQ': (
            ('How do patterns help us predict the future?', 'Investigating scientific patterns and predictions'),
            ('What happens when we change one part of a system?', 'Exploring interconnected relationships'),
            ('Why do living things adapt to their environment?', 'Understanding evolution and adaptation'),
            ('How can science help our community?', 'Applying scientific thinking locally'),
        ),
        'IDEATION_CHALLENGE': (
            ('Design a solution for local environmental issues', 'Apply science to solve community problems'),
            ('Create a citizen science project', 'Engage your community in scientific discovery'),
            ('Build a model ecosystem', 'Demonstrate interconnected relationships'),
            ('Develop a health awareness campaign', 'Use science to promote wellbeing'),
        ),
    },
    'default': {
        'IDEATION_BIG_IDEA': (
            ('Systems and Connections', 'How parts work together to create wholes'),
            ('Change Over Time', 'Understanding patterns of growth and transformation'),
            ('Community Impact', 'Making a difference in our local world'),
            ('Creative Problem Solving', 'Finding innovative solutions to challenges'),
        ),
        'JOURNEY_PHASES': (
            ('Explore, Plan, Create, Share', 'A four-phase arc from curiosity to public product'),
            ('Discover, Design, Test, Celebrate', 'Iterative cycles with visible progress'),
            ('Question, Investigate, Build, Present', 'Inquiry first, product second'),
        ),
        'JOURNEY_ACTIVITIES': (
            ('Research, brainstorming, prototyping, presenting', 'Core activities across the phases'),
            ('Field observations and expert interviews', 'Gathering evidence from the real world'),
            ('Peer teaching and gallery walks', 'Students learn by explaining to others'),
        ),
        'JOURNEY_RESOURCES': (
            ('Books, videos, guest speakers, art supplies', 'A mix of media and people'),
            ('Community partners and local experts', 'Authentic voices from outside school'),
            ('Digital tools for research and making', 'Technology that supports creation'),
        ),
        'DELIVER_MILESTONES': (
            ('Research complete, prototype built, presentation ready', 'Three visible checkpoints'),
            ('Proposal approved, first draft, feedback round, final product', 'Feedback built into the timeline'),
            ('Weekly showcase of progress', 'Small, frequent wins'),
        ),
        'DELIVER_RUBRIC': (
            ('Understanding, creativity, teamwork, communication', 'Balanced academic and collaborative criteria'),
            ('"I can" statements for each phase', 'Student-friendly success criteria'),
            ('Process journal plus final product', 'Values growth as well as outcome'),
        ),
        'DELIVER_IMPACT': (
            ('Community fair showcasing student solutions', 'Families and neighbours as audience'),
            ('Teaching younger classes', 'Students become the experts'),
            ('Video documentary for the school website', 'A lasting artifact of the work'),
        ),
    },
}

_WHATIF_TABLES: Dict[str, Dict[str, tuple]] = {
    'Physical Education': {
        'IDEATION_BIG_IDEA': (
            ("What if PE class designed the school wellness program?", 'Students become health leaders for the entire community'),
            ('What if movement was integrated into every subject?', 'Creating kinesthetic learning across the curriculum'),
            ('What if students invented their own Olympic sport?', 'From conception to competition, students create new games'),
        ),
        'IDEATION_EQ': (
            ('What if we could measure joy in movement?', 'Exploring metrics beyond fitness and competition'),
            ('What if every student coached a sport?', 'Leadership development through teaching others'),
            ('What if PE connected to local community needs?', 'Using physical activity to solve real problems'),
        ),
        'IDEATION_CHALLENGE': (
            ('What if students ran a community fitness festival?', 'Organizing events that promote healthy living for all ages'),
            ('What if the playground was reimagined by kids?', 'Designing and proposing inclusive play spaces'),
            ("What if movement could tell our community's story?", 'Creating performances that celebrate local culture'),
        ),
    },
    'default': {
        'default': (
            ('What if students became the teachers?', 'Peer-led learning experiences'),
            ('What if learning happened everywhere?', 'Breaking down classroom walls'),
            ('What if failure was celebrated?', 'Embracing mistakes as learning opportunities'),
        ),
    },
}


class StaticSuggestionProvider:
    """
    Curated suggestion tables.

    Lookup order for ideas: subject table for the step, default table for
    the step, then the subject's (or default) Big Idea table.
    What-ifs: subject table for the step, otherwise the generic set.
    """

    def __init__(self, seed: Optional[SeedData] = None, catalog: Optional[StageCatalog] = None):
        self.seed = seed or SeedData()
        self.catalog = catalog or StageCatalog(self.seed)

    def lookup(self, kind: str, stage: Stage, step: int) -> List[Card]:
        """Synchronous table lookup (never empty)"""
        step_id = self.catalog.step_id_for(stage, step)

        if kind == WHATIF:
            subject_table = _WHATIF_TABLES.get(self.seed.subject, {})
            rows = subject_table.get(step_id) or _WHATIF_TABLES['default']['default']
            return _cards(WHATIF, rows)

        if kind != IDEAS:
            raise SuggestionProviderError(f"Unknown suggestion kind '{kind}'")

        subject_table = _IDEA_TABLES.get(self.seed.subject, {})
        default_table = _IDEA_TABLES['default']
        rows = (
            subject_table.get(step_id)
            or default_table.get(step_id)
            or subject_table.get('IDEATION_BIG_IDEA')
            or default_table['IDEATION_BIG_IDEA']
        )
        return _cards(IDEAS, rows)

    async def fetch_suggestions(
        self,
        kind: str,
        stage: Stage,
        step: int,
        captured: Mapping[str, Any]
    ) -> List[Card]:
        cards = self.lookup(kind, stage, step)
        logger.debug(f"Static {kind} for {Stage(stage).value}/{step}: {len(cards)} cards")
        return cards


class LLMSuggestionProvider:
    """
    Model-backed suggestions.

    Builds a prompt from seed data, the current step and earlier answers,
    runs HuggingFaceClient.generate() in a worker thread, and parses
    'Title: ... / Description: ...' blocks into cards.
    """

    IDEA_COUNT = 4
    WHATIF_COUNT = 3
    MIN_CARDS = 3

    TITLE_PATTERN = re.compile(r'^\s*(?:[-*\d.)\s]*)?\**Title\**\s*:\s*(.+)$', re.IGNORECASE)
    DESCRIPTION_PATTERN = re.compile(r'^\s*(?:[-*\s]*)?\**Description\**\s*:\s*(.+)$', re.IGNORECASE)

    def __init__(
        self,
        hf_client,
        seed: Optional[SeedData] = None,
        catalog: Optional[StageCatalog] = None,
        temperature: float = 0.8,
        max_tokens: int = 512
    ):
        """
        Args:
            hf_client: Object with callable generate(prompt, max_tokens, temperature)
                and is_loaded()
            seed: Wizard intake data
            catalog: Stage catalog (built from seed if omitted)
            temperature: Sampling temperature
            max_tokens: Max new tokens per call

        Raises:
            TypeError: If hf_client lacks generate()
            RuntimeError: If the model is not loaded
        """
        if not callable(getattr(hf_client, 'generate', None)):
            raise TypeError("hf_client must have callable generate() method")
        if not hf_client.is_loaded():
            raise RuntimeError("HuggingFace client model not loaded")

        self.hf_client = hf_client
        self.seed = seed or SeedData()
        self.catalog = catalog or StageCatalog(self.seed)
        self.temperature = temperature
        self.max_tokens = max_tokens

        logger.info(f"LLMSuggestionProvider initialized (temp={temperature}, max_tokens={max_tokens})")

    def build_prompt(self, kind: str, stage: Stage, step: int, captured: Mapping[str, Any]) -> str:
        label = self.catalog.label_for(stage, step)
        count = self.IDEA_COUNT if kind == IDEAS else self.WHATIF_COUNT

        context_lines = []
        for key in self.catalog.all_keys():
            if key in captured:
                context_lines.append(f"- {key}: {captured[key]}")
        context = "\n".join(context_lines) if context_lines else "- (nothing confirmed yet)"

        if kind == IDEAS:
            task = (
                f"Generate {count} suggestions for the {label} that are appropriate for "
                f"{self.seed.age_group} students, connect to {self.seed.location}, "
                f"and build on the decisions above."
            )
            title_hint = f"[Concise {label}]"
        else:
            task = (
                f"Generate {count} transformative \"What if\" scenarios for the {label} that "
                f"give students real power to create change in {self.seed.location}."
            )
            title_hint = "What if [complete the transformative question]?"

        return (
            f"You are an expert curriculum designer helping an educator design a "
            f"{self.seed.subject} project for {self.seed.age_group} students in "
            f"{self.seed.location}.\n\n"
            f"Decisions so far:\n{context}\n\n"
            f"Current stage: {self.catalog.stage_label(stage)}, step {step} ({label}).\n\n"
            f"{task}\n\n"
            f"Format each suggestion as:\n"
            f"Title: {title_hint}\n"
            f"Description: [One sentence about why it matters]\n\n"
            f"Respond ONLY with the {count} suggestions in the exact format specified."
        )

    def parse_cards(self, kind: str, text: str) -> List[Card]:
        """
        Parse 'Title:' / 'Description:' blocks.

        Lines that match neither pattern are ignored; a Description
        without a preceding Title is dropped.
        """
        rows = []
        for line in text.splitlines():
            title_match = self.TITLE_PATTERN.match(line)
            if title_match:
                rows.append([title_match.group(1).strip().strip('*').strip(), ""])
                continue
            description_match = self.DESCRIPTION_PATTERN.match(line)
            if description_match and rows and not rows[-1][1]:
                rows[-1][1] = description_match.group(1).strip().strip('*').strip()

        return [
            Card(id=f"{kind}-{index}", title=title, description=description, kind=kind)
            for index, (title, description) in enumerate(rows, 1)
            if title
        ]

    async def fetch_suggestions(
        self,
        kind: str,
        stage: Stage,
        step: int,
        captured: Mapping[str, Any]
    ) -> List[Card]:
        """
        Raises:
            SuggestionProviderError: If generation fails or yields too few cards
        """
        if kind not in (IDEAS, WHATIF):
            raise SuggestionProviderError(f"Unknown suggestion kind '{kind}'")

        prompt = self.build_prompt(kind, stage, step, captured)
        try:
            text = await asyncio.to_thread(
                self.hf_client.generate,
                prompt=prompt,
                max_tokens=self.max_tokens,
                temperature=self.temperature
            )
        except Exception as e:
            logger.error(f"Suggestion generation failed: {type(e).__name__} - {e}")
            raise SuggestionProviderError(f"Suggestion generation failed: {e}") from e

        cards = self.parse_cards(kind, text)
        limit = self.IDEA_COUNT if kind == IDEAS else self.WHATIF_COUNT

        if len(cards) < self.MIN_CARDS:
            logger.warning(f"Model returned {len(cards)} parseable {kind} cards (need {self.MIN_CARDS})")
            raise SuggestionProviderError(
                f"Model returned {len(cards)} usable suggestions, expected at least {self.MIN_CARDS}"
            )

        logger.info(f"Generated {min(len(cards), limit)} {kind} cards for {Stage(stage).value}/{step}")
        return cards[:limit]


class FallbackSuggestionProvider:
    """Primary provider with a fallback that answers when the primary fails"""

    def __init__(self, primary: SuggestionProvider, fallback: SuggestionProvider):
        self.primary = primary
        self.fallback = fallback

    async def fetch_suggestions(
        self,
        kind: str,
        stage: Stage,
        step: int,
        captured: Mapping[str, Any]
    ) -> List[Card]:
        try:
            return await self.primary.fetch_suggestions(kind, stage, step, captured)
        except Exception as e:
            logger.warning(
                f"{type(self.primary).__name__} failed ({e}); "
                f"using {type(self.fallback).__name__}"
            )
            return await self.fallback.fetch_suggestions(kind, stage, step, captured)


def build_suggestion_provider(seed: Optional[SeedData] = None, hf_client=None,
                              temperature: float = 0.8) -> SuggestionProvider:
    """
    Provider for one session.

    Static tables alone when no model is loaded, otherwise the model with
    the static tables as fallback.
    """
    catalog = StageCatalog(seed)
    static = StaticSuggestionProvider(seed, catalog)
    if hf_client is None:
        return static
    llm = LLMSuggestionProvider(hf_client, seed, catalog, temperature=temperature)
    return FallbackSuggestionProvider(llm, static)

"""Challenge strategies.

A strategy is the part of a session that differs between challenge kinds:
where the rounds come from and what media a round plays. Everything else,
sequencing, playback and scoring, is shared by the session controller.
"""

import logging
from abc import ABC, abstractmethod

from partygame.lib.exceptions import NotEnoughRoundsError, ValidationError
from partygame.lib.models import (
    ChallengeKind,
    ResolvedRounds,
    Round,
    RoundItem,
    SessionConfig,
)

from .media import MediaHandle, SignalledMedia, StaticMedia
from .resolver import MediaResolver

logger = logging.getLogger(__name__)


class ChallengeStrategy(ABC):
    """Source of rounds and media for one challenge kind."""

    kind: ChallengeKind

    @abstractmethod
    async def resolve(self, config: SessionConfig) -> ResolvedRounds:
        """Produce the round items for a session."""

    @abstractmethod
    def media_for(self, round: Round) -> MediaHandle:
        """Create the media handle for a round."""


class AudioGuessStrategy(ChallengeStrategy):
    """Name-that-tune rounds built from a playlist."""

    kind = ChallengeKind.AUDIO_GUESS

    def __init__(self, resolver: MediaResolver):
        self.resolver = resolver

    async def resolve(self, config: SessionConfig) -> ResolvedRounds:
        return await self.resolver.resolve(config.source_ref, config.desired_count)

    def media_for(self, round: Round) -> MediaHandle:
        return SignalledMedia(round.item.media_url)


class QuizStrategy(ChallengeStrategy):
    """Authored questions, played in the order given."""

    kind = ChallengeKind.QUIZ

    def __init__(self, questions: list[RoundItem]):
        self.questions = list(questions)

    async def resolve(self, config: SessionConfig) -> ResolvedRounds:
        if not self.questions:
            raise NotEnoughRoundsError("Quiz has no questions")

        for question in self.questions:
            if not question.prompt.strip():
                raise ValidationError(
                    f"Question {question.id} has no prompt", field="prompt", value=question.id
                )

        items = [q.model_copy(deep=True) for q in self.questions[: config.desired_count]]
        for item in items:
            if not item.answer:
                item.answer = ", ".join(opt.text for opt in item.options if opt.is_correct)

        logger.info(f"Quiz resolved {len(items)} of {len(self.questions)} questions")
        return ResolvedRounds(items=items, requested=config.desired_count)

    def media_for(self, round: Round) -> MediaHandle:
        return StaticMedia()

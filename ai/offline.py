"""Offline fallback patterns for task shrinking.

Used when no AI provider is reachable: the task title is matched against a
few common task categories and a canned breakdown is returned.
"""
import random
import re
from dataclasses import dataclass
from typing import List, Optional, Tuple

from ai.types import Difficulty, ShrunkTask, TaskShrinkResponse


@dataclass(frozen=True)
class _Strategy:
    steps: Tuple[Tuple[str, int, Difficulty, str], ...]
    encouragement: str

    def tasks(self) -> List[ShrunkTask]:
        return [
            ShrunkTask(title=title, estimated_minutes=minutes, difficulty=difficulty, motivation=motivation)
            for title, minutes, difficulty, motivation in self.steps
        ]


@dataclass(frozen=True)
class _TaskPattern:
    pattern: "re.Pattern[str]"
    category: str
    strategies: Tuple[_Strategy, ...]


T, E = Difficulty.TRIVIAL, Difficulty.EASY

TASK_PATTERNS: Tuple[_TaskPattern, ...] = (
    _TaskPattern(
        re.compile(r"\b(clean|tidy|organi[sz]e)\b", re.IGNORECASE),
        "cleaning",
        (_Strategy(
            (
                ("Pick up one item and put it where it belongs", 2, T, "Just one thing. That's all."),
                ("Clear one small surface, like a desk corner", 5, E, "One clear spot makes the room feel calmer."),
                ("Set a 5-minute timer and stop when it rings", 5, E, "You don't have to finish, only start."),
            ),
            "A clean space isn't the goal, starting is.",
        ),),
    ),
    _TaskPattern(
        re.compile(r"\b(write|draft|compose|essay|report|email)\b", re.IGNORECASE),
        "writing",
        (_Strategy(
            (
                ("Open the document or create a new one", 1, T, "Opening it is step one."),
                ("Write a deliberately bad first sentence", 2, T, "Rough drafts turn into good drafts."),
                ("Jot down 3 bullet points about the topic", 5, E, "No full sentences needed yet."),
            ),
            "Every writer starts with a blank page. Now you're a writer.",
        ),),
    ),
    _TaskPattern(
        re.compile(r"\b(exercise|workout|gym|run|jog|walk)\b", re.IGNORECASE),
        "exercise",
        (_Strategy(
            (
                ("Put on your workout clothes", 3, T, "Once you're dressed, momentum kicks in."),
                ("Do 5 stretches or jumping jacks", 1, T, "Any movement counts."),
                ("Walk to the front door", 1, T, "Motion creates motion."),
            ),
            "The hardest part is putting on the shoes.",
        ),),
    ),
    _TaskPattern(
        re.compile(r"\b(call|phone|contact|reach out)\b", re.IGNORECASE),
        "communication",
        (_Strategy(
            (
                ("Find the phone number or contact details", 2, T, "Only look it up, no calling yet."),
                ("Write down 1-2 things you need to say", 3, E, "A tiny script takes the pressure off."),
                ("Dial the number", 1, E, "You're allowed to hang up if you need to."),
            ),
            "Calls are hard for a lot of people. You're not alone.",
        ),),
    ),
    _TaskPattern(
        re.compile(r"\b(study|learn|read|review)\b", re.IGNORECASE),
        "learning",
        (_Strategy(
            (
                ("Open your materials", 1, T, "Just open them, don't read yet."),
                ("Read for 5 minutes, then decide whether to continue", 5, E, "Five minutes is a real session."),
                ("Write one sentence about what you just read", 2, E, "Putting it in your words makes it stick."),
            ),
            "Learning doesn't need to be a marathon. Sprints work too.",
        ),),
    ),
    _TaskPattern(
        re.compile(r"\b(cook|meal|food|dinner|lunch|breakfast)\b", re.IGNORECASE),
        "cooking",
        (_Strategy(
            (
                ("Check what's in the fridge", 1, T, "Just look. No decisions yet."),
                ("Pick the simplest thing you could make", 2, T, "Simple food is still food."),
                ("Get out one pan or plate", 1, T, "Setting up is half the work."),
            ),
            "Nourishing yourself is self-care, however you do it.",
        ),),
    ),
)

GENERIC_STRATEGIES: Tuple[_Strategy, ...] = (
    _Strategy(
        (
            ("Write down the very first physical action", 2, T, "Name it and it gets smaller."),
            ("Gather what you need for that action", 3, T, "Getting ready counts as progress."),
            ("Do the first action for 5 minutes", 5, E, "Five minutes, then you can stop."),
        ),
        "The task feels big because you're seeing all of it. Let's look at one piece.",
    ),
    _Strategy(
        (
            ("Set a 2-minute timer", 1, T, "Two minutes is nothing. You can do nothing."),
            ("Work on any part of the task until it rings", 2, T, "Any part counts, not just the first."),
            ("Decide whether to keep going", 1, T, "Stopping is allowed. So is continuing."),
        ),
        "You don't need motivation to start. Starting creates motivation.",
    ),
)


def _find_matching_pattern(task_title: str) -> Optional[_TaskPattern]:
    return next((p for p in TASK_PATTERNS if p.pattern.search(task_title)), None)


def generate_offline_shrink(task_title: str, rng: Optional[random.Random] = None) -> TaskShrinkResponse:
    """Shrink suggestions without any provider call."""
    rng = rng or random
    pattern = _find_matching_pattern(task_title)

    if pattern is not None:
        strategy = rng.choice(pattern.strategies)
        reasoning = f"Using {pattern.category} pattern"
    else:
        strategy = rng.choice(GENERIC_STRATEGIES)
        reasoning = "Using general task-breaking strategy"

    return TaskShrinkResponse(
        original_task=task_title,
        shrunk_tasks=strategy.tasks(),
        encouragement=strategy.encouragement,
        reasoning=reasoning,
    )


def has_offline_pattern(task_title: str) -> bool:
    return _find_matching_pattern(task_title) is not None


def get_pattern_categories() -> List[str]:
    return [p.category for p in TASK_PATTERNS]

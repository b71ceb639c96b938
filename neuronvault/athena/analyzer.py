"""
NeuronVault Athena - Prompt analyzer.

Keyword and pattern heuristics over a closed category taxonomy. Fast,
deterministic, and always produces a full analysis: prompts with no
category signal get a generic, low-certainty result.
"""

from __future__ import annotations

import re
import time

from loguru import logger

from neuronvault.athena.models import PromptAnalysis
from neuronvault.core.exceptions import AnalysisError
from neuronvault.core.types import ComplexityTier, PromptCategory

# Word-stem patterns per category, matched against the lowercased prompt
CATEGORY_PATTERNS: dict[PromptCategory, list[str]] = {
    PromptCategory.REASONING: [
        r"\bwhy\b",
        r"\breason",
        r"\blogic",
        r"\bpuzzle",
        r"\bdeduc",
        r"\binfer",
        r"\bexplain",
        r"\bbecause\b",
        r"\bimplication",
        r"\bcause",
        r"\bthink\b",
        r"\bargument",
    ],
    PromptCategory.CREATIVITY: [
        r"\bstor(?:y|ies)\b",
        r"\bpoem",
        r"\bpoetry\b",
        r"\bcreative",
        r"\bimagin",
        r"\binvent",
        r"\bfiction",
        r"\bcharacter",
        r"\bbrainstorm",
        r"\bnovel\b",
        r"\blyrics?\b",
        r"\bsong",
        r"\bideas?\b",
    ],
    PromptCategory.CODING: [
        r"\bcode\b",
        r"\bcoding\b",
        r"\bfunction",
        r"\bbug",
        r"\bdebug",
        r"\bpython\b",
        r"\bjavascript\b",
        r"\btypescript\b",
        r"\brust\b",
        r"\bapi\b",
        r"\balgorithm",
        r"\bclass\b",
        r"\bcompil",
        r"\brefactor",
        r"\bsql\b",
        r"\bscript",
        r"\bprogram",
        r"\bimplement",
        r"\bregex\b",
        r"```",
    ],
    PromptCategory.ANALYSIS: [
        r"\banaly[sz]",
        r"\bcompar",
        r"\bevaluat",
        r"\bassess",
        r"\bdata\b",
        r"\bstatistic",
        r"\btrends?\b",
        r"\bresearch",
        r"\bpros and cons\b",
        r"\btrade-?offs?\b",
        r"\bmetrics?\b",
        r"\breview\b",
    ],
    PromptCategory.WRITING: [
        r"\bwrite\b",
        r"\bessay",
        r"\bemail",
        r"\bletter\b",
        r"\brewrite",
        r"\bsummar",
        r"\bdraft",
        r"\bedit\b",
        r"\bproofread",
        r"\barticle",
        r"\bblog",
        r"\bparagraph",
        r"\btone\b",
    ],
    PromptCategory.MATH: [
        r"\bcalculat",
        r"\bequation",
        r"\bintegral",
        r"\bderivative",
        r"\bprobabilit",
        r"\btheorem",
        r"\bprove\b",
        r"\balgebra",
        r"\bmatri(?:x|ces)\b",
        r"\bpercent",
        r"\barithmetic",
        r"\bgeometr",
        r"\d+\s*[-+*/^=]\s*\d+",
    ],
    PromptCategory.CONVERSATION: [
        r"^\s*(?:hi|hello|hey)\b",
        r"\bthanks?\b",
        r"\bthank you\b",
        r"\bhow are you\b",
        r"\bchat\b",
        r"\bopinion",
        r"\bfavou?rite\b",
        r"\bwhat do you think\b",
    ],
    PromptCategory.SAFETY: [
        r"\bhack",
        r"\bexploit",
        r"\bmalware\b",
        r"\bweapon",
        r"\bharm",
        r"\bdangerous\b",
        r"\billegal\b",
        r"\bjailbreak",
        r"\bbypass",
        r"\bethic",
        r"\bprivacy\b",
        r"\bunsafe\b",
    ],
}

# Domain vocabulary that pushes complexity towards expert
SPECIALIZED_PATTERNS: list[str] = [
    r"\blegal\b",
    r"\bmedical\b",
    r"\bclinical\b",
    r"\bfinancial\b",
    r"\bscientific\b",
    r"\bacademic\b",
    r"\btechnical\b",
    r"\bprofessional\b",
    r"\bregulator",
    r"\bcompliance\b",
    r"\bquantum\b",
    r"\bgenomic",
    r"\bactuarial\b",
    r"\bjurisprudence\b",
]

# Complexity rules
SIMPLE_MAX_WORDS = 10
COMPLEX_MIN_WORDS = 50
COMPLEX_MIN_SENTENCES = 3
COMPLEX_MIN_QUESTIONS = 2

# Certainty bounds
GENERIC_CERTAINTY = 0.4
CERTAINTY_BASE = 0.6
CERTAINTY_DOMINANCE = 0.3

# Share of a primary category's weight in the capability vector
PRIMARY_SHARE = 0.5
SECONDARY_MIN_SHARE = 0.2

_WORD_RE = re.compile(r"[a-z0-9']+")
_SENTENCE_SPLIT_RE = re.compile(r"[.!?]+")

_COMPILED_CATEGORIES: dict[PromptCategory, list[re.Pattern[str]]] = {
    category: [re.compile(p, re.IGNORECASE | re.MULTILINE) for p in patterns]
    for category, patterns in CATEGORY_PATTERNS.items()
}
_COMPILED_SPECIALIZED = [re.compile(p, re.IGNORECASE) for p in SPECIALIZED_PATTERNS]


def _count_hits(patterns: list[re.Pattern[str]], text: str) -> int:
    return sum(len(p.findall(text)) for p in patterns)


class PromptAnalyzer:
    """
    Heuristic prompt analyzer.

    Example:
        >>> analysis = PromptAnalyzer().analyze("Write a Python function to parse CSV")
        >>> analysis.category
        <PromptCategory.CODING: 'coding'>
    """

    def analyze(self, prompt: str) -> PromptAnalysis:
        """
        Analyze a prompt.

        Raises:
            AnalysisError: If the prompt is empty.
        """
        if not isinstance(prompt, str) or not prompt.strip():
            raise AnalysisError("cannot analyze an empty prompt")

        started = time.perf_counter()
        text = prompt.lower()

        hits = {
            category: _count_hits(patterns, text)
            for category, patterns in _COMPILED_CATEGORIES.items()
        }
        total_hits = sum(hits.values())

        words = _WORD_RE.findall(text)
        sentences = [s for s in _SENTENCE_SPLIT_RE.split(prompt) if s.strip()]
        questions = prompt.count("?")
        specialized_hits = _count_hits(_COMPILED_SPECIALIZED, text)

        complexity = self._complexity(len(words), len(sentences), questions, specialized_hits)
        reasoning = [
            f"Analyzed {len(words)} words, {len(sentences)} sentence(s), {questions} question(s)",
        ]

        if total_hits == 0:
            category = PromptCategory.CONVERSATION
            vector = {c: 1.0 / len(PromptCategory) for c in PromptCategory}
            secondary: tuple[PromptCategory, ...] = ()
            certainty = GENERIC_CERTAINTY
            in_taxonomy = False
            reasoning.append("No category signal found, using a generic profile")
        else:
            shares = {c: hits[c] / total_hits for c in PromptCategory}
            # Ties resolve to taxonomy order
            category = max(PromptCategory, key=lambda c: hits[c])
            vector = {
                c: PRIMARY_SHARE * (c == category) + (1 - PRIMARY_SHARE) * shares[c]
                for c in PromptCategory
            }
            secondary = tuple(
                sorted(
                    (
                        c
                        for c in PromptCategory
                        if c != category and shares[c] >= SECONDARY_MIN_SHARE
                    ),
                    key=lambda c: -shares[c],
                )
            )
            certainty = round(
                min(0.95, CERTAINTY_BASE + CERTAINTY_DOMINANCE * shares[category]), 4
            )
            in_taxonomy = True
            reasoning.append(
                f"Category {category.value}: {hits[category]}/{total_hits} keyword hits"
            )
            if secondary:
                reasoning.append(
                    "Secondary categories: " + ", ".join(c.value for c in secondary)
                )

        reasoning.append(f"Complexity {complexity.value} from length and structure")
        if specialized_hits:
            reasoning.append(f"{specialized_hits} specialized term(s) detected")

        analysis = PromptAnalysis(
            prompt=prompt,
            category=category,
            complexity=complexity,
            capability_vector=vector,
            secondary_categories=secondary,
            certainty=certainty,
            in_taxonomy=in_taxonomy,
            word_count=len(words),
            sentence_count=len(sentences),
            question_count=questions,
            specialized=specialized_hits > 0,
            reasoning=tuple(reasoning),
            analysis_time_ms=round((time.perf_counter() - started) * 1000, 3),
        )
        logger.debug(
            f"🧠 Analysis: {category.value}/{complexity.value} (certainty {certainty:.2f})"
        )
        return analysis

    @staticmethod
    def _complexity(
        words: int, sentences: int, questions: int, specialized_hits: int
    ) -> ComplexityTier:
        if words < SIMPLE_MAX_WORDS and sentences <= 1:
            tier = ComplexityTier.SIMPLE
        elif (
            words > COMPLEX_MIN_WORDS
            or sentences > COMPLEX_MIN_SENTENCES
            or questions > COMPLEX_MIN_QUESTIONS
        ):
            tier = ComplexityTier.COMPLEX
        else:
            tier = ComplexityTier.MODERATE

        if tier == ComplexityTier.MODERATE and specialized_hits:
            return ComplexityTier.EXPERT
        if tier == ComplexityTier.COMPLEX and specialized_hits >= 2:
            return ComplexityTier.EXPERT
        return tier

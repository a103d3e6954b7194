"""
Readiness aggregation over skill signals.

Signals blend into a running per-skill estimate with exponential recency
weighting. Coverage and the readiness score are derived from those
estimates against a role's required skills at read time.
"""
import logging
import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Union

from hiready.core.config import AccessSettings, get_settings
from hiready.core.errors import InvalidInputError
from hiready.services.storage import RequiredSkill, SkillStore

logger = logging.getLogger(__name__)


class SignalSource(str, Enum):
    EXPLICIT = "explicit"  # confirmed scenario/skill mapping
    INFERRED = "inferred"  # inferred from a session transcript


class CoverageStatus(str, Enum):
    GAP = "gap"
    PARTIAL = "partial"
    COVERED = "covered"


@dataclass
class SkillCoverage:
    skill_id: int
    weight: float
    estimate: float
    status: CoverageStatus


@dataclass
class CoverageMatrix:
    user_id: int
    skills: List[SkillCoverage] = field(default_factory=list)

    def status_by_skill(self) -> Dict[int, CoverageStatus]:
        return {row.skill_id: row.status for row in self.skills}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "user_id": self.user_id,
            "skills": [
                {
                    "skill_id": row.skill_id,
                    "weight": row.weight,
                    "estimate": row.estimate,
                    "status": row.status.value,
                }
                for row in self.skills
            ],
        }


@dataclass
class ReadinessScore:
    score: int
    top_gaps: List[int]
    readiness_level: str

    def to_dict(self) -> Dict[str, Any]:
        return {"score": self.score, "top_gaps": list(self.top_gaps), "readiness_level": self.readiness_level}


@dataclass
class RoleReadiness:
    coverage: CoverageMatrix
    readiness: ReadinessScore


READINESS_LEVELS = (
    (85, "exceptional"),
    (70, "strong"),
    (55, "ready"),
    (40, "developing"),
)


def readiness_level(score: float) -> str:
    clamped = min(100, max(0, score))
    for floor, level in READINESS_LEVELS:
        if clamped >= floor:
            return level
    return "not_ready"


RequirementInput = Union[RequiredSkill, Dict[str, Any]]


def normalize_requirements(required_skills: Optional[Iterable[RequirementInput]]) -> List[RequiredSkill]:
    """
    Coerce requirement input into RequiredSkill rows.

    Accepts RequiredSkill objects or dicts with skill_id/skillId and weight.
    Repeated skill ids merge by summing their weights; first-seen order is kept.
    """
    merged: Dict[int, float] = {}
    for item in required_skills or []:
        if isinstance(item, RequiredSkill):
            skill_id, weight = item.skill_id, item.weight
        elif isinstance(item, dict):
            skill_id = item.get("skill_id", item.get("skillId"))
            weight = item.get("weight", 1.0)
        else:
            raise InvalidInputError(f"Unsupported requirement entry: {item!r}")

        if skill_id is None:
            raise InvalidInputError("Required skill is missing skill_id")
        try:
            weight = float(weight)
        except (TypeError, ValueError):
            raise InvalidInputError(f"Invalid weight for skill {skill_id}: {weight!r}")
        if math.isnan(weight) or weight < 0:
            raise InvalidInputError(f"Weight for skill {skill_id} must be non-negative")
        merged[skill_id] = merged.get(skill_id, 0.0) + weight

    return [RequiredSkill(skill_id=skill_id, weight=weight) for skill_id, weight in merged.items()]


def _round_half_up(value: float) -> int:
    # 1e-9 absorbs float noise such as 49.99999999 from weighted sums
    return int(math.floor(value + 0.5 + 1e-9))


class ReadinessAggregator:
    """Blends skill signals and rolls them up into coverage and readiness."""

    def __init__(self, store: SkillStore, settings: Optional[AccessSettings] = None):
        self.store = store
        self.settings = settings or get_settings()

    def alpha_for(self, source: SignalSource) -> float:
        if source is SignalSource.EXPLICIT:
            return self.settings.explicit_alpha
        return self.settings.inferred_alpha

    def record_signal(
        self,
        user_id: int,
        skill_id: int,
        strength: float,
        source: Union[SignalSource, str] = SignalSource.INFERRED,
    ) -> float:
        """
        Blend a new observation into the user's estimate for a skill.

        Skill ids outside every role blueprint are still recorded. Returns the
        new blended estimate.
        """
        if user_id is None:
            raise InvalidInputError("user_id is required")
        if skill_id is None:
            raise InvalidInputError("skill_id is required")
        if isinstance(strength, bool) or not isinstance(strength, (int, float)):
            raise InvalidInputError(f"strength must be a number, got {strength!r}")
        strength = float(strength)
        if math.isnan(strength) or not 0.0 <= strength <= 1.0:
            raise InvalidInputError(f"strength must be within [0, 1], got {strength}")
        try:
            source = SignalSource(source)
        except ValueError:
            raise InvalidInputError(f"Unknown signal source: {source}")

        alpha = self.alpha_for(source)
        estimate = self.store.blend_skill_estimate(user_id, skill_id, strength, alpha, source.value)
        logger.info(
            f"Skill signal recorded: user_id={user_id}, skill_id={skill_id}, source={source.value}, "
            f"strength={strength:.3f}, estimate={estimate:.3f}"
        )
        return estimate

    def classify(self, estimate: float) -> CoverageStatus:
        if estimate < self.settings.gap_threshold:
            return CoverageStatus.GAP
        if estimate < self.settings.covered_threshold:
            return CoverageStatus.PARTIAL
        return CoverageStatus.COVERED

    def compute_coverage(self, user_id: int, required_skills: Iterable[RequirementInput]) -> CoverageMatrix:
        if user_id is None:
            raise InvalidInputError("user_id is required")
        requirements = normalize_requirements(required_skills)
        estimates = self.store.get_skill_estimates(user_id, [r.skill_id for r in requirements])

        rows = []
        for requirement in requirements:
            estimate = estimates.get(requirement.skill_id, 0.0)
            rows.append(SkillCoverage(
                skill_id=requirement.skill_id,
                weight=requirement.weight,
                estimate=estimate,
                status=self.classify(estimate),
            ))
        return CoverageMatrix(user_id=user_id, skills=rows)

    def compute_readiness_score(self, user_id: int, required_skills: Iterable[RequirementInput]) -> ReadinessScore:
        """
        Weighted mean of skill estimates scaled to 0-100, plus the top gaps.

        An empty requirement list scores 0 with no gaps.
        """
        coverage = self.compute_coverage(user_id, required_skills)
        return self._score(coverage)

    def _score(self, coverage: CoverageMatrix) -> ReadinessScore:
        rows = coverage.skills
        if not rows:
            return ReadinessScore(score=0, top_gaps=[], readiness_level=readiness_level(0))

        total_weight = sum(row.weight for row in rows)
        if total_weight <= 0:
            raise InvalidInputError("Required skill weights must not all be zero")

        weighted = sum((row.weight / total_weight) * row.estimate for row in rows)
        score = min(100, max(0, _round_half_up(weighted * 100)))

        # Least covered first; among equals the heavier skill matters more
        ordered = sorted(
            enumerate(rows),
            key=lambda pair: (pair[1].estimate, -pair[1].weight, pair[0]),
        )
        top_gaps = [
            row.skill_id for _, row in ordered
            if row.status is not CoverageStatus.COVERED
        ][: self.settings.max_top_gaps]

        return ReadinessScore(score=score, top_gaps=top_gaps, readiness_level=readiness_level(score))

    def compute_for_role(
        self,
        user_id: int,
        role_kit_id: Optional[int] = None,
        job_target_id: Optional[str] = None,
    ) -> RoleReadiness:
        """Coverage and readiness against a role kit or job target blueprint."""
        if role_kit_id is None and job_target_id is None:
            raise InvalidInputError("role_kit_id or job_target_id is required")
        requirements = self.store.get_role_required_skills(role_kit_id=role_kit_id, job_target_id=job_target_id)
        coverage = self.compute_coverage(user_id, requirements)
        readiness = self._score(coverage)
        logger.info(
            f"Readiness computed: user_id={user_id}, role_kit_id={role_kit_id}, "
            f"job_target_id={job_target_id}, score={readiness.score}, gaps={len(readiness.top_gaps)}"
        )
        return RoleReadiness(coverage=coverage, readiness=readiness)

"""Core data models for the decision and prediction engine."""
from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional

from .errors import InvalidInputError
from .prediction_options import PredictionOptions, PredictionType, parse_options

TRAITS = (
    "rational",
    "emotional",
    "traditional",
    "innovative",
    "individual",
    "collective",
    "intuitive",
    "planned",
)
AUDIENCES = ("public", "government", "business", "academic", "media")
RESOURCES = ("money", "connections", "information")
PREDICTION_CATEGORIES = (
    "politics",
    "economics",
    "technology",
    "environment",
    "culture",
    "science",
    "health",
    "education",
    "social",
    "international",
    "other",
)


class DecisionStatus(str, Enum):
    PENDING = "pending"
    ACTIVE = "active"
    RESOLVED = "resolved"
    EXPIRED = "expired"
    CANCELLED = "cancelled"


class PredictionStatus(str, Enum):
    PENDING = "pending"
    ACTIVE = "active"
    RESOLVED = "resolved"
    EXPIRED = "expired"
    CANCELLED = "cancelled"


OPEN_STATUSES = frozenset({"pending", "active"})


class Importance(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class Difficulty(str, Enum):
    EASY = "easy"
    MEDIUM = "medium"
    HARD = "hard"
    EXTREME = "extreme"


def new_id() -> str:
    return uuid.uuid4().hex


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def parse_datetime(value: Any) -> Optional[datetime]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        parsed = datetime.fromisoformat(str(value))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def parse_enum(enum_cls, value: Any, label: str):
    try:
        return enum_cls(value)
    except ValueError as exc:
        allowed = ", ".join(member.value for member in enum_cls)
        raise InvalidInputError(f"Invalid {label}: {value}. Choose from {allowed}") from exc


def _as_int(value: Any, label: str) -> int:
    try:
        return int(value or 0)
    except (TypeError, ValueError) as exc:
        raise InvalidInputError(f"{label} must be an integer", {label: value}) from exc


def _entries(value: Any, label: str) -> List[Dict[str, Any]]:
    """Require a list of objects, as sent for options and effects."""

    if value is None:
        return []
    if not isinstance(value, list) or not all(isinstance(entry, dict) for entry in value):
        raise InvalidInputError(f"{label} must be a list of objects", {label: value})
    return value


def _int_map(data: Optional[Dict[str, Any]], vocabulary: Iterable[str], label: str) -> Dict[str, int]:
    """Validate keys against a closed vocabulary and coerce values to ints."""

    if data is not None and not isinstance(data, dict):
        raise InvalidInputError(f"{label} values must be an object", {label: data})
    allowed = set(vocabulary)
    result: Dict[str, int] = {}
    for key, value in (data or {}).items():
        if key not in allowed:
            raise InvalidInputError(f"Unknown {label}: {key}")
        result[key] = _as_int(value, f"{label} {key}")
    return result


def empty_resources() -> Dict[str, int]:
    return {name: 0 for name in RESOURCES}


def empty_reputation() -> Dict[str, int]:
    return {name: 0 for name in AUDIENCES}


# Characters ------------------------------------------------------------


@dataclass
class Specialty:
    name: str
    level: int

    def to_dict(self) -> Dict[str, Any]:
        return {"name": self.name, "level": self.level}

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> "Specialty":
        name = str(data.get("name") or "").strip()
        if not name:
            raise InvalidInputError("Every specialty needs a name", {"specialty": data})
        return Specialty(name=name, level=_as_int(data.get("level"), "specialty level"))


@dataclass
class Narrative:
    id: str
    title: str
    summary: str = ""
    category: str = "other"
    tags: List[str] = field(default_factory=list)
    status: str = "active"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "summary": self.summary,
            "category": self.category,
            "tags": list(self.tags),
            "status": self.status,
        }

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> "Narrative":
        return Narrative(
            id=str(data["id"]),
            title=str(data.get("title", "")),
            summary=str(data.get("summary", "")),
            category=str(data.get("category") or "other"),
            tags=list(data.get("tags") or []),
            status=str(data.get("status") or "active"),
        )


@dataclass
class CharacterSnapshot:
    """Read model of a character: traits, specialties, resources and standing."""

    id: str
    user_id: str
    name: str
    type: str = ""
    background: str = ""
    traits: Dict[str, int] = field(default_factory=dict)
    specialties: List[Specialty] = field(default_factory=list)
    resources: Dict[str, int] = field(default_factory=empty_resources)
    influence: int = 0
    experience: int = 0
    reputation: Dict[str, int] = field(default_factory=empty_reputation)
    narratives: Dict[str, bool] = field(default_factory=dict)
    decisions: List[str] = field(default_factory=list)

    def __post_init__(self) -> None:
        self.traits = _int_map(self.traits, TRAITS, "trait")
        for trait, value in self.traits.items():
            if value < 0 or value > 10:
                raise InvalidInputError(f"Trait {trait} must be between 0 and 10")
        seen = set()
        for specialty in self.specialties:
            if specialty.name in seen:
                raise InvalidInputError(f"Duplicate specialty: {specialty.name}")
            if specialty.level < 1 or specialty.level > 10:
                raise InvalidInputError(f"Specialty {specialty.name} level must be between 1 and 10")
            seen.add(specialty.name)
        self.resources = {**empty_resources(), **_int_map(self.resources, RESOURCES, "resource")}
        if any(value < 0 for value in self.resources.values()):
            raise InvalidInputError("Resources cannot be negative")
        if self.influence < 0:
            raise InvalidInputError("Influence cannot be negative")
        self.reputation = {**empty_reputation(), **_int_map(self.reputation, AUDIENCES, "audience")}
        for audience, value in self.reputation.items():
            if value < -100 or value > 100:
                raise InvalidInputError(f"Reputation with {audience} must be between -100 and 100")

    def trait(self, name: str) -> int:
        return self.traits.get(name, 0)

    def specialty_level(self, name: str) -> Optional[int]:
        for specialty in self.specialties:
            if specialty.name == name:
                return specialty.level
        return None

    def is_active_in(self, narrative_id: str) -> bool:
        return bool(self.narratives.get(narrative_id, False))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "name": self.name,
            "type": self.type,
            "background": self.background,
            "traits": dict(self.traits),
            "specialties": [specialty.to_dict() for specialty in self.specialties],
            "resources": dict(self.resources),
            "influence": self.influence,
            "experience": self.experience,
            "reputation": dict(self.reputation),
            "narratives": dict(self.narratives),
            "decisions": list(self.decisions),
        }

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> "CharacterSnapshot":
        return CharacterSnapshot(
            id=str(data["id"]),
            user_id=str(data["user_id"]),
            name=str(data.get("name", "")),
            type=str(data.get("type", "")),
            background=str(data.get("background", "")),
            traits=dict(data.get("traits") or {}),
            specialties=[Specialty.from_dict(entry) for entry in data.get("specialties") or []],
            resources=dict(data.get("resources") or {}),
            influence=int(data.get("influence", 0)),
            experience=int(data.get("experience", 0)),
            reputation=dict(data.get("reputation") or {}),
            narratives={str(k): bool(v) for k, v in (data.get("narratives") or {}).items()},
            decisions=list(data.get("decisions") or []),
        )


# Decisions -------------------------------------------------------------


@dataclass
class DecisionOption:
    """A choice within a decision. Requirement values of 0 mean no requirement."""

    text: str
    id: str = field(default_factory=new_id)
    description: str = ""
    consequences: str = ""
    required_traits: Dict[str, int] = field(default_factory=dict)
    required_specialties: List[Specialty] = field(default_factory=list)
    influence_required: int = 0
    resource_cost: Dict[str, int] = field(default_factory=dict)
    reputation_impact: Dict[str, int] = field(default_factory=dict)

    def __post_init__(self) -> None:
        self.required_traits = _int_map(self.required_traits, TRAITS, "trait")
        self.resource_cost = _int_map(self.resource_cost, RESOURCES, "resource")
        self.reputation_impact = _int_map(self.reputation_impact, AUDIENCES, "audience")
        if self.influence_required < 0:
            raise InvalidInputError("influenceRequired cannot be negative")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "text": self.text,
            "description": self.description,
            "consequences": self.consequences,
            "requiredTraits": dict(self.required_traits),
            "requiredSpecialties": [entry.to_dict() for entry in self.required_specialties],
            "influenceRequired": self.influence_required,
            "resourceCost": dict(self.resource_cost),
            "reputationImpact": dict(self.reputation_impact),
        }

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> "DecisionOption":
        text = str(data.get("text") or data.get("title") or "").strip()
        if not text:
            raise InvalidInputError("Every option needs text")
        return DecisionOption(
            id=str(data.get("id") or new_id()),
            text=text,
            description=str(data.get("description") or ""),
            consequences=str(data.get("consequences") or ""),
            required_traits=data.get("requiredTraits") or {},
            required_specialties=[
                Specialty.from_dict(entry)
                for entry in _entries(data.get("requiredSpecialties"), "requiredSpecialties")
            ],
            influence_required=_as_int(data.get("influenceRequired"), "influenceRequired"),
            resource_cost=data.get("resourceCost") or {},
            reputation_impact=data.get("reputationImpact") or {},
        )


@dataclass
class RelationshipEffect:
    character: str
    trust: int = 0
    influence: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {"character": self.character, "trust": self.trust, "influence": self.influence}


def _relationship_from_dict(data: Dict[str, Any]) -> RelationshipEffect:
    character = str(data.get("character") or "").strip()
    if not character:
        raise InvalidInputError("Every relationship effect needs a character", {"relationship": data})
    return RelationshipEffect(
        character=character,
        trust=_as_int(data.get("trust"), "relationship trust"),
        influence=_as_int(data.get("influence"), "relationship influence"),
    )


@dataclass
class Unlock:
    type: str
    description: str

    def to_dict(self) -> Dict[str, str]:
        return {"type": self.type, "description": self.description}


@dataclass
class OutcomeEffects:
    influence: int = 0
    experience: int = 0
    resources: Dict[str, int] = field(default_factory=dict)
    reputation: Dict[str, int] = field(default_factory=dict)
    relationships: List[RelationshipEffect] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "influence": self.influence,
            "experience": self.experience,
            "resources": dict(self.resources),
            "reputation": dict(self.reputation),
            "relationships": [entry.to_dict() for entry in self.relationships],
        }

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> "OutcomeEffects":
        return OutcomeEffects(
            influence=_as_int(data.get("influence"), "influence"),
            experience=_as_int(data.get("experience"), "experience"),
            resources=_int_map(data.get("resources"), RESOURCES, "resource"),
            reputation=_int_map(data.get("reputation"), AUDIENCES, "audience"),
            relationships=[
                _relationship_from_dict(entry)
                for entry in _entries(data.get("relationships"), "relationships")
            ],
        )


@dataclass
class Outcome:
    description: str
    effects: OutcomeEffects = field(default_factory=OutcomeEffects)
    unlocks: List[Unlock] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "description": self.description,
            "effects": self.effects.to_dict(),
            "unlocks": [unlock.to_dict() for unlock in self.unlocks],
        }

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> "Outcome":
        effects = data.get("effects") or {}
        if not isinstance(effects, dict):
            raise InvalidInputError("Outcome effects must be an object", {"effects": effects})
        return Outcome(
            description=str(data.get("description", "")),
            effects=OutcomeEffects.from_dict(effects),
            unlocks=[
                Unlock(type=str(entry.get("type", "")), description=str(entry.get("description", "")))
                for entry in _entries(data.get("unlocks"), "unlocks")
            ],
        )


@dataclass
class AggregatedEffect:
    """Net numeric delta across outcomes, ready to apply to a character."""

    influence: int = 0
    experience: int = 0
    resources: Dict[str, int] = field(default_factory=empty_resources)
    reputation: Dict[str, int] = field(default_factory=empty_reputation)
    relationships: List[RelationshipEffect] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "influence": self.influence,
            "experience": self.experience,
            "resources": dict(self.resources),
            "reputation": dict(self.reputation),
            "relationships": [entry.to_dict() for entry in self.relationships],
        }


@dataclass
class Decision:
    id: str
    narrative_id: str
    character_id: str
    user_id: str
    title: str
    description: str
    options: List[DecisionOption]
    status: DecisionStatus
    importance: Importance
    created_at: datetime
    time_limit: int  # seconds
    expires_at: datetime
    scene_id: Optional[str] = None
    prompt: str = ""
    chosen_option_id: Optional[str] = None
    outcomes: List[Outcome] = field(default_factory=list)
    resolved_at: Optional[datetime] = None
    generated: bool = False
    version: int = 0
    updated_at: Optional[datetime] = None

    def option(self, option_id: str) -> Optional[DecisionOption]:
        for option in self.options:
            if option.id == option_id:
                return option
        return None

    @property
    def chosen_option(self) -> Optional[DecisionOption]:
        if self.chosen_option_id is None:
            return None
        return self.option(self.chosen_option_id)

    def is_open(self) -> bool:
        return self.status.value in OPEN_STATUSES

    def is_past_deadline(self, now: datetime) -> bool:
        return now > self.expires_at

    def time_remaining(self, now: datetime) -> int:
        """Seconds until expiry, 0 unless the decision is active."""
        if self.status != DecisionStatus.ACTIVE:
            return 0
        return max(0, int((self.expires_at - now).total_seconds()))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "narrativeId": self.narrative_id,
            "characterId": self.character_id,
            "userId": self.user_id,
            "sceneId": self.scene_id,
            "title": self.title,
            "description": self.description,
            "prompt": self.prompt,
            "options": [option.to_dict() for option in self.options],
            "status": self.status.value,
            "importance": self.importance.value,
            "createdAt": _iso(self.created_at),
            "timeLimit": self.time_limit,
            "expiresAt": _iso(self.expires_at),
            "chosenOptionId": self.chosen_option_id,
            "outcomes": [outcome.to_dict() for outcome in self.outcomes],
            "resolvedAt": _iso(self.resolved_at),
            "generated": self.generated,
            "version": self.version,
            "updatedAt": _iso(self.updated_at),
        }

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> "Decision":
        return Decision(
            id=str(data["id"]),
            narrative_id=str(data["narrativeId"]),
            character_id=str(data["characterId"]),
            user_id=str(data["userId"]),
            scene_id=data.get("sceneId"),
            title=str(data.get("title", "")),
            description=str(data.get("description", "")),
            prompt=str(data.get("prompt", "")),
            options=[DecisionOption.from_dict(entry) for entry in data.get("options") or []],
            status=DecisionStatus(data["status"]),
            importance=Importance(data.get("importance", "medium")),
            created_at=parse_datetime(data["createdAt"]),
            time_limit=int(data["timeLimit"]),
            expires_at=parse_datetime(data["expiresAt"]),
            chosen_option_id=data.get("chosenOptionId"),
            outcomes=[Outcome.from_dict(entry) for entry in data.get("outcomes") or []],
            resolved_at=parse_datetime(data.get("resolvedAt")),
            generated=bool(data.get("generated", False)),
            version=int(data.get("version", 0)),
            updated_at=parse_datetime(data.get("updatedAt")),
        )


# Predictions -----------------------------------------------------------


@dataclass
class PredictionVote:
    user_id: str
    selection: Any
    amount: int
    voted_at: datetime
    character_id: Optional[str] = None


@dataclass
class PredictionResolution:
    correct_selection: Any
    explanation: str
    resolved_at: datetime
    resolved_by: str
    accuracy: Optional[float] = None
    auto_resolved: bool = False
    events: List[Dict[str, Any]] = field(default_factory=list)


@dataclass
class LedgerEntry:
    """A token credit owed to a user; applied by the caller, not by the engine."""

    user_id: str
    amount: int
    kind: str = "reward"

    def to_dict(self) -> Dict[str, Any]:
        return {"userId": self.user_id, "amount": self.amount}


@dataclass
class Prediction:
    id: str
    user_id: str
    character_id: str
    narrative_id: str
    title: str
    description: str
    type: PredictionType
    options: PredictionOptions
    category: str
    difficulty: Difficulty
    confidence: int
    stake_amount: int
    status: PredictionStatus
    created_at: datetime
    deadline: datetime
    decision_id: Optional[str] = None
    tags: List[str] = field(default_factory=list)
    votes: List[PredictionVote] = field(default_factory=list)
    resolution: Optional[PredictionResolution] = None
    cancellation_reason: Optional[str] = None
    cancelled_at: Optional[datetime] = None
    is_ai_generated: bool = False
    estimated_reward: int = 0
    version: int = 0
    updated_at: Optional[datetime] = None

    @property
    def participant_count(self) -> int:
        return len({vote.user_id for vote in self.votes})

    @property
    def total_staked(self) -> int:
        return sum(vote.amount for vote in self.votes)

    def vote_for(self, user_id: str) -> Optional[PredictionVote]:
        for vote in self.votes:
            if vote.user_id == user_id:
                return vote
        return None

    def is_open(self) -> bool:
        return self.status.value in OPEN_STATUSES

    def is_past_deadline(self, now: datetime) -> bool:
        return now > self.deadline

    def time_remaining(self, now: datetime) -> int:
        if self.status != PredictionStatus.ACTIVE:
            return 0
        return max(0, int((self.deadline - now).total_seconds()))

    def to_dict(self) -> Dict[str, Any]:
        resolution = None
        if self.resolution is not None:
            resolution = {
                "correctSelection": self.options.selection_to_json(self.resolution.correct_selection),
                "explanation": self.resolution.explanation,
                "resolvedAt": _iso(self.resolution.resolved_at),
                "resolvedBy": self.resolution.resolved_by,
                "accuracy": self.resolution.accuracy,
                "autoResolved": self.resolution.auto_resolved,
                "events": list(self.resolution.events),
            }
        return {
            "id": self.id,
            "userId": self.user_id,
            "characterId": self.character_id,
            "narrativeId": self.narrative_id,
            "decisionId": self.decision_id,
            "title": self.title,
            "description": self.description,
            "type": self.type.value,
            "options": self.options.to_dict(),
            "category": self.category,
            "tags": list(self.tags),
            "difficulty": self.difficulty.value,
            "confidence": self.confidence,
            "stakeAmount": self.stake_amount,
            "status": self.status.value,
            "createdAt": _iso(self.created_at),
            "deadline": _iso(self.deadline),
            "votes": [
                {
                    "userId": vote.user_id,
                    "characterId": vote.character_id,
                    "selection": self.options.selection_to_json(vote.selection),
                    "amount": vote.amount,
                    "votedAt": _iso(vote.voted_at),
                }
                for vote in self.votes
            ],
            "participantCount": self.participant_count,
            "totalVotes": len(self.votes),
            "totalStaked": self.total_staked,
            "resolution": resolution,
            "cancellationReason": self.cancellation_reason,
            "cancelledAt": _iso(self.cancelled_at),
            "isAIGenerated": self.is_ai_generated,
            "estimatedReward": self.estimated_reward,
            "version": self.version,
            "updatedAt": _iso(self.updated_at),
        }

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> "Prediction":
        kind = PredictionType(data["type"])
        options = parse_options(kind, data["options"])
        resolution = None
        raw_resolution = data.get("resolution")
        if raw_resolution:
            resolution = PredictionResolution(
                correct_selection=options.selection_from_json(raw_resolution["correctSelection"]),
                explanation=str(raw_resolution.get("explanation", "")),
                resolved_at=parse_datetime(raw_resolution["resolvedAt"]),
                resolved_by=str(raw_resolution.get("resolvedBy", "")),
                accuracy=raw_resolution.get("accuracy"),
                auto_resolved=bool(raw_resolution.get("autoResolved", False)),
                events=list(raw_resolution.get("events") or []),
            )
        return Prediction(
            id=str(data["id"]),
            user_id=str(data["userId"]),
            character_id=str(data["characterId"]),
            narrative_id=str(data["narrativeId"]),
            decision_id=data.get("decisionId"),
            title=str(data.get("title", "")),
            description=str(data.get("description", "")),
            type=kind,
            options=options,
            category=str(data.get("category") or "other"),
            tags=list(data.get("tags") or []),
            difficulty=Difficulty(data.get("difficulty", "medium")),
            confidence=int(data.get("confidence", 50)),
            stake_amount=int(data.get("stakeAmount", 0)),
            status=PredictionStatus(data["status"]),
            created_at=parse_datetime(data["createdAt"]),
            deadline=parse_datetime(data["deadline"]),
            votes=[
                PredictionVote(
                    user_id=str(entry["userId"]),
                    character_id=entry.get("characterId"),
                    selection=options.selection_from_json(entry["selection"]),
                    amount=int(entry["amount"]),
                    voted_at=parse_datetime(entry["votedAt"]),
                )
                for entry in data.get("votes") or []
            ],
            resolution=resolution,
            cancellation_reason=data.get("cancellationReason"),
            cancelled_at=parse_datetime(data.get("cancelledAt")),
            is_ai_generated=bool(data.get("isAIGenerated", False)),
            estimated_reward=int(data.get("estimatedReward", 0)),
            version=int(data.get("version", 0)),
            updated_at=parse_datetime(data.get("updatedAt")),
        )


@dataclass
class Event:
    timestamp: datetime
    action: str
    payload: Dict[str, object]


__all__ = [
    "TRAITS",
    "AUDIENCES",
    "RESOURCES",
    "PREDICTION_CATEGORIES",
    "DecisionStatus",
    "PredictionStatus",
    "PredictionType",
    "Importance",
    "Difficulty",
    "Specialty",
    "Narrative",
    "CharacterSnapshot",
    "DecisionOption",
    "RelationshipEffect",
    "Unlock",
    "OutcomeEffects",
    "Outcome",
    "AggregatedEffect",
    "Decision",
    "PredictionVote",
    "PredictionResolution",
    "LedgerEntry",
    "Prediction",
    "Event",
    "new_id",
    "utcnow",
    "parse_datetime",
    "parse_enum",
]

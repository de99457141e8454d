"""Option shapes for the five prediction types.

Every prediction carries exactly one of these payloads, chosen by its
``PredictionType``. The payload owns selection validation, so the state
machine never branches on the type string itself.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from enum import Enum
from typing import Any, ClassVar, Dict, FrozenSet, List, Optional, Type

from .errors import InvalidInputError


class PredictionType(str, Enum):
    BINARY = "binary"
    MULTIPLE = "multiple"
    RANGE = "range"
    TIME = "time"
    COMPOUND = "compound"


def _require_index(raw: Any, size: int, label: str) -> int:
    if isinstance(raw, bool) or not isinstance(raw, int):
        raise InvalidInputError(f"{label} must be an integer index", {"selection": raw})
    if raw < 0 or raw >= size:
        raise InvalidInputError(
            f"{label} {raw} is out of range (0-{size - 1})",
            {"selection": raw, "optionCount": size},
        )
    return raw


def _entry_list(data: Dict[str, Any], key: str) -> List[Any]:
    entries = data.get(key) or []
    if not isinstance(entries, list):
        raise InvalidInputError(f"{key} must be a list", {key: entries})
    return entries


def _coerce_date(raw: Any) -> date:
    if isinstance(raw, datetime):
        return raw.date()
    if isinstance(raw, date):
        return raw
    if isinstance(raw, str):
        try:
            return date.fromisoformat(raw[:10])
        except ValueError as exc:
            raise InvalidInputError(f"Invalid date: {raw}") from exc
    raise InvalidInputError(f"Invalid date: {raw!r}")


class PredictionOptions:
    """Common interface for the option payloads."""

    type: ClassVar[PredictionType]

    def normalize_selection(self, raw: Any) -> Any:
        raise NotImplementedError

    def matches(
        self,
        selection: Any,
        correct: Any,
        *,
        range_tolerance: float = 0.0,
        time_tolerance_days: int = 0,
    ) -> bool:
        return selection == correct

    def labels(self) -> Optional[List[str]]:
        """Discrete labels for vote distribution, or ``None`` for continuous types."""
        return None

    def describe(self) -> str:
        raise NotImplementedError

    def to_dict(self) -> Dict[str, Any]:
        raise NotImplementedError

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PredictionOptions":
        raise NotImplementedError

    def selection_to_json(self, selection: Any) -> Any:
        return selection

    def selection_from_json(self, raw: Any) -> Any:
        return self.normalize_selection(raw)


@dataclass
class BinaryOptions(PredictionOptions):
    """Yes/no statement. Index 0 is "Yes", index 1 is "No"."""

    type: ClassVar[PredictionType] = PredictionType.BINARY

    statement: str

    def normalize_selection(self, raw: Any) -> int:
        if isinstance(raw, bool):
            return 0 if raw else 1
        return _require_index(raw, 2, "Option index")

    def labels(self) -> List[str]:
        return ["Yes", "No"]

    def describe(self) -> str:
        return f"Prediction statement: {self.statement}"

    def to_dict(self) -> Dict[str, Any]:
        return {"statement": self.statement}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BinaryOptions":
        statement = str(data.get("statement") or "").strip()
        if not statement:
            raise InvalidInputError("Binary predictions need a statement")
        return cls(statement=statement)


@dataclass
class Choice:
    text: str
    probability: float = 0.0


@dataclass
class MultipleOptions(PredictionOptions):
    type: ClassVar[PredictionType] = PredictionType.MULTIPLE

    choices: List[Choice] = field(default_factory=list)

    def normalize_selection(self, raw: Any) -> int:
        return _require_index(raw, len(self.choices), "Option index")

    def labels(self) -> List[str]:
        return [choice.text for choice in self.choices]

    def describe(self) -> str:
        lines = ["Possible outcomes:"]
        for index, choice in enumerate(self.choices, start=1):
            lines.append(f"{index}. {choice.text} (Probability: {choice.probability})")
        return "\n".join(lines)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "choices": [
                {"text": choice.text, "probability": choice.probability}
                for choice in self.choices
            ]
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MultipleOptions":
        choices: List[Choice] = []
        for entry in _entry_list(data, "choices"):
            if isinstance(entry, str):
                choices.append(Choice(text=entry))
                continue
            if not isinstance(entry, dict):
                raise InvalidInputError("Every choice must be an object or a string", {"choice": entry})
            text = str(entry.get("text") or "").strip()
            if not text:
                raise InvalidInputError("Every choice needs text")
            raw_probability = entry.get("probability", 0.0)
            if isinstance(raw_probability, bool):
                raise InvalidInputError("Choice probability must be a number", {"probability": raw_probability})
            try:
                probability = float(raw_probability)
            except (TypeError, ValueError) as exc:
                raise InvalidInputError(
                    "Choice probability must be a number", {"probability": raw_probability}
                ) from exc
            choices.append(Choice(text=text, probability=probability))
        if len(choices) < 2:
            raise InvalidInputError("Multiple-choice predictions need at least two choices")
        return cls(choices=choices)


@dataclass
class RangeOptions(PredictionOptions):
    type: ClassVar[PredictionType] = PredictionType.RANGE

    min: float
    max: float
    unit: str = ""

    def normalize_selection(self, raw: Any) -> float:
        if isinstance(raw, bool) or not isinstance(raw, (int, float)):
            raise InvalidInputError("Range selection must be a number", {"selection": raw})
        value = float(raw)
        if value < self.min or value > self.max:
            raise InvalidInputError(
                f"Value {value} is outside the range {self.min}-{self.max}",
                {"selection": value, "min": self.min, "max": self.max},
            )
        return value

    def matches(
        self,
        selection: Any,
        correct: Any,
        *,
        range_tolerance: float = 0.0,
        time_tolerance_days: int = 0,
    ) -> bool:
        allowed = (self.max - self.min) * max(0.0, range_tolerance)
        return abs(float(selection) - float(correct)) <= allowed

    def describe(self) -> str:
        return f"Range prediction: Between {self.min} and {self.max} {self.unit}".rstrip()

    def to_dict(self) -> Dict[str, Any]:
        return {"min": self.min, "max": self.max, "unit": self.unit}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RangeOptions":
        try:
            low = float(data["min"])
            high = float(data["max"])
        except (KeyError, TypeError, ValueError) as exc:
            raise InvalidInputError("Range predictions need numeric min and max") from exc
        if low >= high:
            raise InvalidInputError("Range min must be below max", {"min": low, "max": high})
        return cls(min=low, max=high, unit=str(data.get("unit") or ""))


@dataclass
class TimeOptions(PredictionOptions):
    type: ClassVar[PredictionType] = PredictionType.TIME

    earliest_date: date
    latest_date: date

    def normalize_selection(self, raw: Any) -> date:
        value = _coerce_date(raw)
        if value < self.earliest_date or value > self.latest_date:
            raise InvalidInputError(
                f"Date {value.isoformat()} is outside "
                f"{self.earliest_date.isoformat()} - {self.latest_date.isoformat()}",
                {"selection": value.isoformat()},
            )
        return value

    def matches(
        self,
        selection: Any,
        correct: Any,
        *,
        range_tolerance: float = 0.0,
        time_tolerance_days: int = 0,
    ) -> bool:
        delta = abs(_coerce_date(selection) - _coerce_date(correct))
        return delta <= timedelta(days=max(0, time_tolerance_days))

    def describe(self) -> str:
        return (
            "Time prediction: Event will occur between "
            f"{self.earliest_date.isoformat()} and {self.latest_date.isoformat()}"
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "earliestDate": self.earliest_date.isoformat(),
            "latestDate": self.latest_date.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TimeOptions":
        if "earliestDate" not in data or "latestDate" not in data:
            raise InvalidInputError("Time predictions need earliestDate and latestDate")
        earliest = _coerce_date(data["earliestDate"])
        latest = _coerce_date(data["latestDate"])
        if earliest > latest:
            raise InvalidInputError("earliestDate must not be after latestDate")
        return cls(earliest_date=earliest, latest_date=latest)

    def selection_to_json(self, selection: Any) -> Any:
        return _coerce_date(selection).isoformat()


@dataclass
class Condition:
    description: str
    required: bool = False


@dataclass
class CompoundOptions(PredictionOptions):
    """Several conditions; a selection is the set of conditions expected to hold."""

    type: ClassVar[PredictionType] = PredictionType.COMPOUND

    conditions: List[Condition] = field(default_factory=list)

    def normalize_selection(self, raw: Any) -> FrozenSet[int]:
        if isinstance(raw, (str, bytes, dict)) or not hasattr(raw, "__iter__"):
            raise InvalidInputError(
                "Compound selection must be a list of condition indices",
                {"selection": raw},
            )
        indices = [_require_index(item, len(self.conditions), "Condition index") for item in raw]
        if len(set(indices)) != len(indices):
            raise InvalidInputError("Condition indices must not repeat", {"selection": indices})
        return frozenset(indices)

    def describe(self) -> str:
        lines = ["Compound conditions:"]
        for index, condition in enumerate(self.conditions, start=1):
            flag = "Required" if condition.required else "Optional"
            lines.append(f"{index}. {condition.description} ({flag})")
        return "\n".join(lines)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "conditions": [
                {"description": condition.description, "required": condition.required}
                for condition in self.conditions
            ]
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CompoundOptions":
        conditions: List[Condition] = []
        for entry in _entry_list(data, "conditions"):
            if not isinstance(entry, dict):
                raise InvalidInputError("Every condition must be an object", {"condition": entry})
            description = str(entry.get("description") or "").strip()
            if not description:
                raise InvalidInputError("Every condition needs a description")
            conditions.append(Condition(description=description, required=bool(entry.get("required", False))))
        if len(conditions) < 2:
            raise InvalidInputError("Compound predictions need at least two conditions")
        if not any(condition.required for condition in conditions):
            raise InvalidInputError("At least one condition must be required")
        return cls(conditions=conditions)

    def selection_to_json(self, selection: Any) -> Any:
        return sorted(selection)


OPTION_TYPES: Dict[PredictionType, Type[PredictionOptions]] = {
    PredictionType.BINARY: BinaryOptions,
    PredictionType.MULTIPLE: MultipleOptions,
    PredictionType.RANGE: RangeOptions,
    PredictionType.TIME: TimeOptions,
    PredictionType.COMPOUND: CompoundOptions,
}


def parse_prediction_type(value: Any) -> PredictionType:
    try:
        return PredictionType(value)
    except ValueError as exc:
        raise InvalidInputError(f"Unsupported prediction type: {value}") from exc


def parse_options(prediction_type: PredictionType | str, data: Any) -> PredictionOptions:
    """Build the option payload for ``prediction_type``.

    Accepts either the bare payload or one nested under its type key
    (``{"binary": {"statement": ...}}``), which is how generated content
    arrives.
    """

    kind = parse_prediction_type(prediction_type)
    if isinstance(data, PredictionOptions):
        if data.type != kind:
            raise InvalidInputError(
                f"Options of type {data.type.value} do not match prediction type {kind.value}"
            )
        return data
    if not isinstance(data, dict):
        raise InvalidInputError("Prediction options must be an object")
    payload = data.get(kind.value, data)
    if not isinstance(payload, dict):
        raise InvalidInputError(f"Options for {kind.value} predictions must be an object")
    return OPTION_TYPES[kind].from_dict(payload)


__all__ = [
    "PredictionType",
    "PredictionOptions",
    "BinaryOptions",
    "Choice",
    "MultipleOptions",
    "RangeOptions",
    "TimeOptions",
    "Condition",
    "CompoundOptions",
    "OPTION_TYPES",
    "parse_prediction_type",
    "parse_options",
]

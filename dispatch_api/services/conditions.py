"""
Condition expressions for dispatch templates.

A condition such as ``day=sat,wed&month=jun`` is parsed once into a
``Condition``: an AND over clauses, where each clause holds the OR'd set of
values it accepts. Evaluation is a pure function of the parsed condition and
a calendar date.

    day=<list>    sun..sat, or the keywords weekday, weekend, everyday
    month=<list>  jan..dec
    dom=<list>    day of month, 1..31
"""
import enum
from dataclasses import dataclass
from datetime import date
from typing import Optional, Union

from dispatch_api.utils.dates import parse_date_key


class ConditionSyntaxError(ValueError):
    """Raised when a condition string cannot be parsed"""


class Weekday(enum.IntEnum):
    # Same numbering as date.weekday()
    MON = 0
    TUE = 1
    WED = 2
    THU = 3
    FRI = 4
    SAT = 5
    SUN = 6


class Month(enum.IntEnum):
    JAN = 1
    FEB = 2
    MAR = 3
    APR = 4
    MAY = 5
    JUN = 6
    JUL = 7
    AUG = 8
    SEP = 9
    OCT = 10
    NOV = 11
    DEC = 12


_DAY_NAMES = {
    "mon": "monday",
    "tue": "tuesday",
    "wed": "wednesday",
    "thu": "thursday",
    "fri": "friday",
    "sat": "saturday",
    "sun": "sunday",
}

_MONTH_NAMES = {
    "jan": "january",
    "feb": "february",
    "mar": "march",
    "apr": "april",
    "may": "may",
    "jun": "june",
    "jul": "july",
    "aug": "august",
    "sep": "september",
    "oct": "october",
    "nov": "november",
    "dec": "december",
}

WEEKDAYS = frozenset({Weekday.MON, Weekday.TUE, Weekday.WED, Weekday.THU, Weekday.FRI})
WEEKEND = frozenset({Weekday.SAT, Weekday.SUN})
EVERY_DAY = frozenset(Weekday)

DAY_KEYWORDS = {
    "weekday": WEEKDAYS,
    "weekend": WEEKEND,
    "everyday": EVERY_DAY,
}


@dataclass(frozen=True)
class DayClause:
    days: frozenset

    def matches(self, target: date) -> bool:
        return Weekday(target.weekday()) in self.days


@dataclass(frozen=True)
class MonthClause:
    months: frozenset

    def matches(self, target: date) -> bool:
        return Month(target.month) in self.months


@dataclass(frozen=True)
class DayOfMonthClause:
    days: frozenset

    def matches(self, target: date) -> bool:
        return target.day in self.days


Clause = Union[DayClause, MonthClause, DayOfMonthClause]


@dataclass(frozen=True)
class Condition:
    """All clauses must hold. No clauses means unconditional."""
    clauses: tuple = ()

    def matches(self, target: date) -> bool:
        return all(clause.matches(target) for clause in self.clauses)

    def combine(self, other: "Condition") -> "Condition":
        return Condition(self.clauses + other.clauses)


ALWAYS = Condition()


def _lookup_name(token: str, names: dict[str, str]) -> Optional[str]:
    for abbrev, full in names.items():
        if token == abbrev or token == full:
            return abbrev
    return None


def _split_values(kind: str, raw: str) -> list[str]:
    values = [v.strip().lower() for v in raw.split(",")]
    if not values or any(not v for v in values):
        raise ConditionSyntaxError(f"Empty value in '{kind}' clause")
    return values


def _parse_day_values(values: list[str]) -> DayClause:
    days: set[Weekday] = set()
    for value in values:
        if value in DAY_KEYWORDS:
            days |= DAY_KEYWORDS[value]
            continue
        abbrev = _lookup_name(value, _DAY_NAMES)
        if abbrev is None:
            raise ConditionSyntaxError(f"Unknown day '{value}'")
        days.add(Weekday[abbrev.upper()])
    return DayClause(frozenset(days))


def _parse_month_values(values: list[str]) -> MonthClause:
    months: set[Month] = set()
    for value in values:
        abbrev = _lookup_name(value, _MONTH_NAMES)
        if abbrev is None:
            raise ConditionSyntaxError(f"Unknown month '{value}'")
        months.add(Month[abbrev.upper()])
    return MonthClause(frozenset(months))


def _parse_dom_values(values: list[str]) -> DayOfMonthClause:
    days: set[int] = set()
    for value in values:
        if not (value.isascii() and value.isdigit()):
            raise ConditionSyntaxError(f"Day of month must be a number, got '{value}'")
        n = int(value)
        if n < 1 or n > 31:
            raise ConditionSyntaxError(f"Day of month out of range: {n}")
        days.add(n)
    return DayOfMonthClause(frozenset(days))


_CLAUSE_PARSERS = {
    "day": _parse_day_values,
    "month": _parse_month_values,
    "dom": _parse_dom_values,
}


def parse_condition(expression: str) -> Condition:
    """Parse 'kind=v1,v2&kind=v3' into a Condition"""
    parts = [part.strip() for part in (expression or "").split("&")]
    if not parts or any(not part for part in parts):
        raise ConditionSyntaxError(f"Empty clause in condition '{expression}'")

    clauses = []
    for part in parts:
        kind, sep, raw_values = part.partition("=")
        kind = kind.strip().lower()
        if not sep:
            raise ConditionSyntaxError(f"Clause '{part}' is missing '='")
        parser = _CLAUSE_PARSERS.get(kind)
        if parser is None:
            raise ConditionSyntaxError(f"Unknown clause kind '{kind}'")
        clauses.append(parser(_split_values(kind, raw_values)))

    return Condition(tuple(clauses))


def evaluate_condition(condition: Condition, target: Union[date, str]) -> bool:
    """Evaluate a parsed condition against a date or YYYY-MM-DD key"""
    if isinstance(target, str):
        target = parse_date_key(target)
    return condition.matches(target)

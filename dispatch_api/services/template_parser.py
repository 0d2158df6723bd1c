"""
Dispatch template parser.

The template is an ordinary note. Its checklist lines become tasks on days
where their condition holds:

    {{if:day=sat}}
    - [ ] Weeding #home +home >{{date:YYYY-MM-DD}}
    {{endif}}
    {{if:day=tue}}- [ ] Take out the bins
    - [ ] Unconditional item

A block runs from ``{{if:...}}`` to ``{{endif}}`` and may nest. The inline
form carries its checklist item on the same line and never has an endif.
Malformed content is never an error: a bad condition drops its rule (or its
whole block), a stray ``{{endif}}`` is ignored and an unclosed block yields
nothing.
"""
import re
from dataclasses import dataclass, field, replace
from typing import List, Optional

from dispatch_api.services.conditions import (
    ALWAYS,
    Condition,
    ConditionSyntaxError,
    parse_condition,
)
from dispatch_api.utils.dates import is_date_key
from dispatch_api.utils.logger import get_logger

logger = get_logger(__name__)

LINE_BREAK_RE = re.compile(r"\r\n|\r|\n")
BLOCK_IF_RE = re.compile(r"^\{\{if:([^}]*)\}\}$", re.IGNORECASE)
INLINE_IF_RE = re.compile(r"^\{\{if:([^}]*)\}\}\s*(\S.*)$", re.IGNORECASE)
ENDIF_RE = re.compile(r"^\{\{endif\}\}$", re.IGNORECASE)
CHECKLIST_RE = re.compile(r"^\s*[-*]\s+\[\s\]\s+(.+?)\s*$")

DUE_DATE_MARKER_RE = re.compile(r"\s*>\{\{date:YYYY-MM-DD\}\}$")
FIXED_DUE_DATE_RE = re.compile(r"\s>(\d{4}-\d{2}-\d{2})$")


@dataclass(frozen=True)
class TemplateRule:
    condition: Condition
    title_template: str
    has_due_date_marker: bool = False
    fixed_due_date: Optional[str] = None
    line_number: int = 0

    def under(self, enclosing: Condition) -> "TemplateRule":
        """The same rule, additionally guarded by an enclosing block condition"""
        return replace(self, condition=enclosing.combine(self.condition))


@dataclass
class _Block:
    condition: Optional[Condition]
    line_number: int
    rules: List[TemplateRule] = field(default_factory=list)


def parse_checklist_item(text: str, line_number: int = 0) -> Optional[TemplateRule]:
    """Parse '- [ ] title [>marker]' into an unconditional rule"""
    match = CHECKLIST_RE.match(text)
    if not match:
        return None

    title = match.group(1)
    has_marker = False
    fixed_due_date = None

    marker = DUE_DATE_MARKER_RE.search(title)
    if marker:
        has_marker = True
        title = title[:marker.start()]
    else:
        fixed = FIXED_DUE_DATE_RE.search(title)
        if fixed and is_date_key(fixed.group(1)):
            fixed_due_date = fixed.group(1)
            title = title[:fixed.start()]

    return TemplateRule(
        condition=ALWAYS,
        title_template=title.strip(),
        has_due_date_marker=has_marker,
        fixed_due_date=fixed_due_date,
        line_number=line_number,
    )


def _try_parse_condition(expression: str, line_number: int) -> Optional[Condition]:
    try:
        return parse_condition(expression)
    except ConditionSyntaxError as e:
        logger.warning(f"Template line {line_number}: skipping condition '{expression}': {e}")
        return None


def parse_template(content: str) -> List[TemplateRule]:
    """Parse template text into rules, in template order"""
    rules: List[TemplateRule] = []
    stack: List[_Block] = []

    def emit(rule: TemplateRule) -> None:
        (stack[-1].rules if stack else rules).append(rule)

    for line_number, raw_line in enumerate(LINE_BREAK_RE.split(content or ""), start=1):
        line = raw_line.strip()
        if not line:
            continue

        block_if = BLOCK_IF_RE.match(line)
        if block_if:
            stack.append(_Block(
                condition=_try_parse_condition(block_if.group(1), line_number),
                line_number=line_number,
            ))
            continue

        if ENDIF_RE.match(line):
            if not stack:
                logger.debug(f"Template line {line_number}: ignoring unmatched endif")
                continue
            block = stack.pop()
            if block.condition is None:
                continue
            for rule in block.rules:
                emit(rule.under(block.condition))
            continue

        inline_if = INLINE_IF_RE.match(line)
        if inline_if:
            condition = _try_parse_condition(inline_if.group(1), line_number)
            item = parse_checklist_item(inline_if.group(2), line_number)
            if condition is not None and item is not None:
                emit(item.under(condition))
            continue

        item = parse_checklist_item(raw_line, line_number)
        if item is not None:
            emit(item)

    for block in stack:
        logger.warning(
            f"Template line {block.line_number}: unclosed if-block, "
            f"dropping {len(block.rules)} rule(s)"
        )

    return rules

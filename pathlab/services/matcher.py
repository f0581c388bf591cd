"""Resolve hand-typed test names to catalog entries.

The cascade is strictly ordered and each step runs only when everything before
it came back empty:

1. exact, case-insensitive name or short name
2. loose-punctuation pattern on name or short name (`C.B.C` ~ `CBC` ~ `C B C`)
3. candidates sharing the first word, compared with separators stripped
4. loose-punctuation pattern on billing service heads
5. keyword table for the category
6. the category string that came with the submission
7. the category's display name when the submitted one is blank or generic

All candidate queries are ordered by primary key, so the same catalog always
yields the same answer.
"""

import logging
import re
from dataclasses import dataclass, field

from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session, selectinload

from pathlab.models.catalog import ServiceHead, TestCategory, TestDefinition
from pathlab.schemas.lab_report import RawTestLine, ResolvedTestLine
from pathlab.services.normalizers import (
    GENERIC_CATEGORY_RE,
    collapse_whitespace,
    compact_key,
    first_token,
    loose_punctuation_pattern,
    parameter_key,
)

logger = logging.getLogger(__name__)

CANDIDATE_LIMIT = 20

# Order matters: the first pattern that matches decides the category.
KEYWORD_CATEGORY_RULES: tuple[tuple[re.Pattern, str], ...] = (
    (re.compile(r"\bmp\s*card\b|\bm\.?p\.?\s*card\b|malaria", re.IGNORECASE), "MICROBIOLOGY"),
    (re.compile(r"\b(c\.?b\.?c|complete\s*blood\s*(count|picture))\b", re.IGNORECASE), "HAEMATOLOGY"),
    (re.compile(r"\bwidal\b", re.IGNORECASE), "SEROLOGY"),
    (re.compile(r"blood\s*group|rh\b", re.IGNORECASE), "HAEMATOLOGY"),
)


def keyword_category(test_name: str | None) -> str | None:
    for pattern, category in KEYWORD_CATEGORY_RULES:
        if pattern.search(test_name or ""):
            return category
    return None


def case_insensitive(pattern: str) -> str:
    # Inline flag works for both Python's re (SQLite) and PostgreSQL AREs.
    return f"(?i){pattern}"


@dataclass
class TestMatch:
    definition: TestDefinition | None = None
    category_ref: int | None = None
    service_ref: int | None = None
    category: str = ""
    steps: list[str] = field(default_factory=list)


class TestMatcher:
    def __init__(self, db: Session):
        self.db = db

    def _definitions(self):
        return select(TestDefinition).options(selectinload(TestDefinition.parameters)).order_by(TestDefinition.id)

    def _definition_exact(self, name: str) -> TestDefinition | None:
        lowered = name.lower()
        stmt = self._definitions().where(
            or_(func.lower(TestDefinition.name) == lowered, func.lower(TestDefinition.short_name) == lowered)
        )
        return self.db.execute(stmt.limit(1)).scalar_one_or_none()

    def _definition_loose(self, pattern: str) -> TestDefinition | None:
        regex = case_insensitive(pattern)
        stmt = self._definitions().where(
            or_(TestDefinition.name.regexp_match(regex), TestDefinition.short_name.regexp_match(regex))
        )
        return self.db.execute(stmt.limit(1)).scalar_one_or_none()

    def _definition_candidates(self, name: str) -> TestDefinition | None:
        token = first_token(name)
        if not token:
            return None
        stmt = self._definitions().where(TestDefinition.name.istartswith(token, autoescape=True))
        target = compact_key(name)
        for candidate in self.db.execute(stmt.limit(CANDIDATE_LIMIT)).scalars():
            if compact_key(candidate.name) == target or compact_key(candidate.short_name) == target:
                return candidate
        return None

    def _service_head_loose(self, pattern: str) -> ServiceHead | None:
        stmt = (
            select(ServiceHead)
            .options(selectinload(ServiceHead.category_head))
            .where(ServiceHead.test_name.regexp_match(case_insensitive(pattern)))
            .order_by(ServiceHead.id)
            .limit(1)
        )
        return self.db.execute(stmt).scalar_one_or_none()

    def category_by_name(self, name: str | None) -> TestCategory | None:
        name = (name or "").strip()
        if not name:
            return None
        stmt = (
            select(TestCategory)
            .where(func.lower(TestCategory.name) == name.lower())
            .order_by(TestCategory.id)
            .limit(1)
        )
        return self.db.execute(stmt).scalar_one_or_none()

    def category_name(self, category_id: int) -> str | None:
        category = self.db.get(TestCategory, category_id)
        return category.name if category else None

    def find_definition(self, test_name: str) -> tuple[TestDefinition | None, str | None]:
        name = collapse_whitespace(test_name)
        if not name:
            return None, None
        definition = self._definition_exact(name)
        if definition is not None:
            return definition, "exact"
        pattern = loose_punctuation_pattern(name)
        if pattern:
            definition = self._definition_loose(pattern)
            if definition is not None:
                return definition, "loose"
        definition = self._definition_candidates(name)
        if definition is not None:
            return definition, "candidates"
        return None, None

    def match(self, test_name: str, category_hint: str | None = None) -> TestMatch:
        result = TestMatch()
        definition, step = self.find_definition(test_name)
        if definition is not None:
            result.definition = definition
            result.category_ref = definition.category_id
            result.service_ref = definition.service_head_id
            result.steps.append(step)
        else:
            pattern = loose_punctuation_pattern(test_name)
            head = self._service_head_loose(pattern) if pattern else None
            if head is not None:
                result.service_ref = head.id
                result.steps.append("service_head")
                if head.category_head is not None:
                    category = self.category_by_name(head.category_head.category_name)
                    if category is not None:
                        result.category_ref = category.id

        if result.category_ref is None:
            keyword = keyword_category(test_name)
            if keyword:
                category = self.category_by_name(keyword)
                if category is not None:
                    result.category_ref = category.id
                    result.steps.append("keyword")

        if result.category_ref is None and category_hint:
            category = self.category_by_name(category_hint)
            if category is not None:
                result.category_ref = category.id
                result.steps.append("explicit_category")

        display = (category_hint or "").strip()
        if result.category_ref is not None and (not display or GENERIC_CATEGORY_RE.match(display)):
            display = self.category_name(result.category_ref) or display
        result.category = display
        return result

    @staticmethod
    def resolve_parameters(definition: TestDefinition | None, parameters: list[dict]) -> list[dict]:
        """Attach parameter and unit refs by normalised name; unmatched rows pass through."""
        if definition is None or not definition.parameters or not parameters:
            return parameters
        by_name = {}
        for reference in definition.parameters:
            by_name.setdefault(parameter_key(reference.name), reference)
        resolved = []
        for parameter in parameters:
            reference = by_name.get(parameter_key(parameter.get("name")))
            if reference is None:
                resolved.append(parameter)
                continue
            updated = {**parameter, "parameterRef": reference.id}
            if reference.unit_id is not None:
                updated["unitRef"] = reference.unit_id
            resolved.append(updated)
        return resolved

    def resolve_line(self, line: RawTestLine) -> tuple[dict, list[str]]:
        """Resolve one submitted test. Returns the stored form and what stayed unresolved."""
        match = self.match(line.test_name, line.category)
        submitted = line.model_dump(by_alias=True)
        parameters = self.resolve_parameters(match.definition, submitted.get("parameters") or [])

        resolved = ResolvedTestLine(
            test_name=line.test_name,
            category=match.category or (line.category or ""),
            test_definition_ref=match.definition.id if match.definition else line.test_definition_ref,
            category_ref=match.category_ref if match.category_ref is not None else line.category_ref,
            service_ref=match.service_ref if match.service_ref is not None else line.service_ref,
        )
        stored = {**submitted, **resolved.model_dump(by_alias=True, exclude={"parameters"}), "parameters": parameters}

        unresolved = []
        if stored["testDefinitionRef"] is None:
            unresolved.append("testDefinition")
        if stored["categoryRef"] is None:
            unresolved.append("category")
        logger.debug("Test %r resolved via %s", line.test_name, match.steps or ["nothing"])
        return stored, unresolved

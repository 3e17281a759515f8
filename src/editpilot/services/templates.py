"""Registry of document templates and their initialization edit patterns.

Templates are registered explicitly at startup. A template names the files
it initializes and the patterns that turn collected field values into line
edits for those files.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Any, Callable, Literal, Mapping, Sequence

from ..ai.tools.line_edits import LineEdit

__all__ = [
    "DuplicateTemplateError",
    "EditPattern",
    "TemplateConfig",
    "TemplateMetadata",
    "TemplateRegistry",
    "THESIS_TEMPLATE",
    "default_registry",
]

LOGGER = logging.getLogger(__name__)

FieldBuilder = Callable[[Mapping[str, Any]], str]
FieldCondition = Callable[[Mapping[str, Any]], bool]


# -----------------------------------------------------------------------------
# Exceptions
# -----------------------------------------------------------------------------


class DuplicateTemplateError(Exception):
    """Raised when a template id is registered twice."""

    def __init__(self, template_id: str) -> None:
        self.template_id = template_id
        super().__init__(f"Template '{template_id}' is already registered")


# -----------------------------------------------------------------------------
# Template model
# -----------------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class TemplateMetadata:
    id: str
    name: str
    description: str = ""
    has_init_config: bool = True


@dataclass(slots=True, frozen=True)
class EditPattern:
    """Locates a line or block in a target file and rebuilds it from field values.

    Attributes:
        name: Field or section this pattern fills in.
        kind: ``"single"`` replaces the matching line; ``"block"`` replaces
            everything from the matching line through ``end_pattern``.
        start_pattern: Regex matched against each line to find the start.
        build_content: Builds the replacement text from field values.
        target_file: Path of the file the pattern applies to.
        end_pattern: Regex locating the last line of a block.
        condition: Optional predicate; the pattern is skipped when it is False.
    """

    name: str
    kind: Literal["single", "block"]
    start_pattern: re.Pattern[str]
    build_content: FieldBuilder
    target_file: str
    end_pattern: re.Pattern[str] | None = None
    condition: FieldCondition | None = None

    def plan(self, content: str, fields: Mapping[str, Any]) -> LineEdit | None:
        """Return the replace edit for ``content``, or ``None`` when nothing matches."""

        if self.condition is not None and not self.condition(fields):
            return None
        lines = content.split("\n")
        start = next((i for i, line in enumerate(lines) if self.start_pattern.search(line)), None)
        if start is None:
            LOGGER.debug("Pattern %s found no match in %s", self.name, self.target_file)
            return None
        end = start
        if self.kind == "block":
            if self.end_pattern is None:
                return None
            end = next((i for i in range(start, len(lines)) if self.end_pattern.search(lines[i])), None)
            if end is None:
                LOGGER.debug("Pattern %s found no block end in %s", self.name, self.target_file)
                return None
        return LineEdit(
            edit_type="replace",
            line=start + 1,
            content=self.build_content(fields),
            original_line_count=end - start + 1,
            explanation=f"Initialize {self.name}",
            file_path=self.target_file,
        )


@dataclass(slots=True, frozen=True)
class TemplateConfig:
    metadata: TemplateMetadata
    target_files: tuple[str, ...] = ()
    edit_patterns: tuple[EditPattern, ...] = ()
    initial_state: Mapping[str, Any] | None = None


# -----------------------------------------------------------------------------
# Registry
# -----------------------------------------------------------------------------


class TemplateRegistry:
    """Maps template ids to their configuration.

    Example:
        registry = TemplateRegistry()
        registry.register(THESIS_TEMPLATE)
        registry.target_files("thesis-template")
    """

    def __init__(self, templates: Sequence[TemplateConfig] = ()) -> None:
        self._templates: dict[str, TemplateConfig] = {}
        for template in templates:
            self.register(template)

    def register(self, template: TemplateConfig, *, allow_override: bool = False) -> TemplateConfig:
        """Register ``template`` under its metadata id.

        Raises:
            DuplicateTemplateError: If the id is taken and ``allow_override`` is False.
        """
        template_id = template.metadata.id
        if template_id in self._templates and not allow_override:
            raise DuplicateTemplateError(template_id)
        self._templates[template_id] = template
        LOGGER.debug("Registered template: %s", template_id)
        return template

    def get(self, template_id: str | None) -> TemplateConfig | None:
        if not template_id:
            return None
        return self._templates.get(template_id)

    def ids(self) -> tuple[str, ...]:
        return tuple(self._templates)

    def target_files(self, template_id: str | None) -> tuple[str, ...]:
        template = self.get(template_id)
        return template.target_files if template else ()

    def edit_patterns(self, template_id: str | None) -> tuple[EditPattern, ...]:
        template = self.get(template_id)
        return template.edit_patterns if template else ()

    def initial_state(self, template_id: str | None) -> Mapping[str, Any] | None:
        template = self.get(template_id)
        return template.initial_state if template else None

    def build_init_edits(
        self,
        template_id: str | None,
        files: Mapping[str, str],
        fields: Mapping[str, Any],
    ) -> list[LineEdit]:
        """Plan the initialization edits for ``files`` from collected ``fields``.

        Patterns whose target file is missing from ``files`` are skipped.
        """

        edits: list[LineEdit] = []
        for pattern in self.edit_patterns(template_id):
            content = files.get(pattern.target_file)
            if content is None:
                continue
            edit = pattern.plan(content, fields)
            if edit is not None:
                edits.append(edit)
        return edits


# -----------------------------------------------------------------------------
# Built-in templates
# -----------------------------------------------------------------------------

_THESIS_DEFAULTS = {
    "thesis_title": "Thesis Title",
    "author_name": "Author Name",
    "submission_date": "\\today",
}


def _latex_field(command: str, key: str) -> FieldBuilder:
    def build(fields: Mapping[str, Any]) -> str:
        return f"\\{command}{{{fields.get(key) or _THESIS_DEFAULTS[key]}}}"

    return build


THESIS_TEMPLATE = TemplateConfig(
    metadata=TemplateMetadata(
        id="thesis-template",
        name="Academic Thesis",
        description="Academic thesis template with chapters and bibliography",
    ),
    target_files=("main.tex",),
    edit_patterns=(
        EditPattern("thesis_title", "single", re.compile(r"\\title\{"), _latex_field("title", "thesis_title"), "main.tex"),
        EditPattern("author_name", "single", re.compile(r"\\author\{"), _latex_field("author", "author_name"), "main.tex"),
        EditPattern(
            "submission_date", "single", re.compile(r"\\date\{"), _latex_field("date", "submission_date"), "main.tex"
        ),
    ),
    initial_state={
        "required_fields": {},
        "sections": {
            "introduction": {"status": "missing"},
            "methodology": {"status": "missing"},
            "results": {"status": "missing"},
            "conclusions": {"status": "missing"},
        },
        "other": {},
        "completed": False,
    },
)


def default_registry() -> TemplateRegistry:
    return TemplateRegistry([THESIS_TEMPLATE])

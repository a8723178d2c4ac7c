"""
Optional LLM rewrites of proposal text.

Two steps, both off unless enabled in settings:

- ContentValidator checks the text is well-formed for the target page
  (balanced code fences and inline code in markdown, parseable JSON or
  YAML) and asks the model to reformat it when it is not.
- LengthReducer asks the model to condense text longer than a limit.

A failed rewrite call never fails the conversation; the text is kept as
it was and the problem is recorded as a proposal warning.
"""

import json
import logging
import re
from dataclasses import dataclass, field
from typing import Optional

import yaml

from docsyphon.exceptions import LLMError
from docsyphon.llm.structured import StructuredLLM
from docsyphon.models.schemas import CondensedContent, ReformattedContent

logger = logging.getLogger(__name__)

REFORMAT_SYSTEM_PROMPT = """You fix formatting errors in documentation text for {project_name}.

Return the same content with the listed problems corrected. Do not add, remove or reword information. Keep the file format of the target page ({file_type})."""

REFORMAT_USER_PROMPT = """The proposed text for {page} is not valid {file_type}.

Problems:
{errors}

# Proposed text

{content}

Return the corrected text as reformatted_content."""

CONDENSE_SYSTEM_PROMPT = """You shorten documentation text for {project_name} without losing technical facts.

Keep commands, flags, values, file paths and code blocks exactly as written. Drop repetition, filler and long explanations first."""

CONDENSE_USER_PROMPT = """The proposed text for {page} is {length} characters long. Rewrite it to at most {target_length} characters.

# Proposed text

{content}

Return the shortened text as condensed_content."""

# Proposals without replacement text have nothing to rewrite
SKIPPED_UPDATE_TYPES = ("DELETE", "NONE")

_FENCE_LINE = re.compile(r"^\s*(```|~~~)", re.MULTILINE)
_FENCED_BLOCK = re.compile(r"^\s*(```|~~~).*?^\s*\1", re.MULTILINE | re.DOTALL)


@dataclass
class TransformResult:
    text: str
    warnings: list[str] = field(default_factory=list)
    was_modified: bool = False


def file_type(page: str) -> str:
    lowered = page.lower()
    if lowered.endswith(".json"):
        return "json"
    if lowered.endswith((".yaml", ".yml")):
        return "yaml"
    return "markdown"


def validate_markdown(text: str) -> list[str]:
    errors = []
    if len(_FENCE_LINE.findall(text)) % 2:
        errors.append("Unbalanced code block fence")
    # Inline code is only checked outside complete fenced blocks
    prose = _FENCED_BLOCK.sub("", text)
    if prose.count("`") % 2:
        errors.append("Unbalanced inline code backticks")
    return errors


def validate_json(text: str) -> list[str]:
    try:
        json.loads(text)
    except json.JSONDecodeError as e:
        return [f"Invalid JSON: {e}"]
    return []


def validate_yaml(text: str) -> list[str]:
    try:
        yaml.safe_load(text)
    except yaml.YAMLError as e:
        return [f"Invalid YAML: {e}"]
    return []


VALIDATORS = {
    "markdown": validate_markdown,
    "json": validate_json,
    "yaml": validate_yaml,
}


def validate_content(text: str, page: str) -> list[str]:
    """Formatting problems of text for the page's file type, empty when valid."""
    return VALIDATORS[file_type(page)](text)


class ContentValidator:
    """Reformats proposal text that is not well-formed for its target page."""

    name = "content-validate"

    def __init__(
        self,
        llm: StructuredLLM,
        project_name: str,
        max_retries: int = 2,
        skip_patterns: Optional[list[str]] = None,
        max_tokens: int = 8192,
    ):
        self.llm = llm
        self.project_name = project_name
        self.max_retries = max_retries
        self.skip_patterns = [re.compile(p) for p in skip_patterns or []]
        self.max_tokens = max_tokens

    def should_process(self, update_type: str, page: str) -> bool:
        if update_type in SKIPPED_UPDATE_TYPES:
            return False
        return not any(p.search(page) for p in self.skip_patterns)

    def process(self, text: str, page: str) -> TransformResult:
        errors = validate_content(text, page)
        if not errors:
            return TransformResult(text=text)

        kind = file_type(page)
        current = text
        for attempt in range(1, self.max_retries + 1):
            logger.info(
                f"Reformatting proposal for {page} (attempt {attempt}/{self.max_retries}): "
                f"{'; '.join(errors)}"
            )
            try:
                response = self.llm.request_structured(
                    system_prompt=REFORMAT_SYSTEM_PROMPT.format(
                        project_name=self.project_name, file_type=kind
                    ),
                    user_prompt=REFORMAT_USER_PROMPT.format(
                        page=page,
                        file_type=kind,
                        errors="\n".join(f"- {error}" for error in errors),
                        content=current,
                    ),
                    response_model=ReformattedContent,
                    max_tokens=self.max_tokens,
                    purpose="reformat",
                )
            except LLMError as e:
                logger.warning(f"Reformat request for {page} failed: {e}")
                return TransformResult(text=text, warnings=[f"Content validation failed: {e}"])

            current = response.reformatted_content
            errors = validate_content(current, page)
            if not errors:
                return TransformResult(
                    text=current,
                    warnings=[f"Reformatted invalid {kind} content"],
                    was_modified=current != text,
                )

        logger.warning(f"Proposal for {page} still invalid after {self.max_retries} reformats")
        return TransformResult(
            text=text,
            warnings=[f"Invalid {kind} content: {'; '.join(errors)}"],
        )


class LengthReducer:
    """Condenses proposal text longer than max_length."""

    name = "length-reduce"

    def __init__(
        self,
        llm: StructuredLLM,
        project_name: str,
        max_length: int = 1500,
        target_length: int = 1000,
        max_tokens: int = 8192,
    ):
        if target_length >= max_length:
            raise ValueError("target_length must be below max_length")
        self.llm = llm
        self.project_name = project_name
        self.max_length = max_length
        self.target_length = target_length
        self.max_tokens = max_tokens

    def should_process(self, update_type: str, page: str) -> bool:
        return update_type not in SKIPPED_UPDATE_TYPES

    def process(self, text: str, page: str) -> TransformResult:
        if len(text) <= self.max_length:
            return TransformResult(text=text)

        try:
            response = self.llm.request_structured(
                system_prompt=CONDENSE_SYSTEM_PROMPT.format(project_name=self.project_name),
                user_prompt=CONDENSE_USER_PROMPT.format(
                    page=page,
                    length=len(text),
                    target_length=self.target_length,
                    content=text,
                ),
                response_model=CondensedContent,
                max_tokens=self.max_tokens,
                purpose="condense",
            )
        except LLMError as e:
            logger.warning(f"Condense request for {page} failed: {e}")
            return TransformResult(text=text, warnings=[f"Condensing failed: {e}"])

        # Single attempt; the model's answer is used even when still too long
        condensed = response.condensed_content
        logger.info(f"Condensed proposal for {page} from {len(text)} to {len(condensed)} chars")
        return TransformResult(
            text=condensed,
            warnings=[f"Condensed from {len(text)} to {len(condensed)} characters"],
            was_modified=condensed != text,
        )


def apply_transforms(
    text: Optional[str], update_type: str, page: str, transforms=()
) -> TransformResult:
    """Run every enabled rewrite over proposal text, validation before condensing."""
    if not text:
        return TransformResult(text=text or "")

    current = text
    warnings: list[str] = []
    for transform in transforms:
        if not transform.should_process(update_type, page):
            continue
        result = transform.process(current, page)
        warnings.extend(result.warnings)
        current = result.text
    return TransformResult(text=current, warnings=warnings, was_modified=current != text)

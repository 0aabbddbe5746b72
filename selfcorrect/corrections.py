"""
Correction Catalog
==================

The fixed catalog of correction kinds, each a handler registered by its kind
tag. Handlers are pure text/data transformations on files named explicitly in
a correction descriptor; they validate preconditions first and raise
NotFoundError or CorrectionError instead of writing partial results.

Usage:
    from selfcorrect.corrections import create_default_registry

    registry = create_default_registry()
    handler = registry.get("template_import_fix")
    handler.validate(descriptor)
    result = handler.apply(descriptor)
"""

import json
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

from selfcorrect.errors import CorrectionError, NotFoundError

VALIDATION_MARKER = "validation added by self-correction"


@dataclass
class CorrectionResult:
    """Outcome of one handler application."""
    kind: str
    changed: bool
    files: list[str] = field(default_factory=list)
    message: str = ""


class CorrectionHandler(ABC):
    """A correction kind: descriptor in, file transformation out."""

    kind: str = ""
    required_fields: tuple[str, ...] = ()
    path_fields: tuple[str, ...] = ("file_path",)

    def files(self, descriptor: dict) -> list[str]:
        """Files this correction will modify."""
        return [str(descriptor[name]) for name in self.path_fields if descriptor.get(name)]

    def validate(self, descriptor: dict) -> None:
        """Check required fields and that every referenced file exists."""
        missing = [name for name in self.required_fields if descriptor.get(name) in (None, "")]
        if missing:
            raise CorrectionError(f"Missing required fields for {self.kind}: {', '.join(missing)}")
        for path in self.files(descriptor):
            if not Path(path).is_file():
                raise NotFoundError(f"File not found: {path}")

    @abstractmethod
    def apply(self, descriptor: dict) -> CorrectionResult:
        """Perform the transformation. Call validate() first."""


def _read(path: str) -> str:
    return Path(path).read_text(encoding="utf-8")


def _write(path: str, content: str) -> None:
    Path(path).write_text(content, encoding="utf-8")


class SyntaxRewriteHandler(CorrectionHandler):
    """Rewrite a command fragment in a file, optionally on one line only."""

    kind = "command_syntax_fix"
    required_fields = ("file_path", "original", "replacement")

    def apply(self, descriptor: dict) -> CorrectionResult:
        path = str(descriptor["file_path"])
        original = descriptor["original"]
        replacement = descriptor["replacement"]
        line_number: Optional[int] = descriptor.get("line_number")

        content = _read(path)
        if line_number is None:
            if original not in content:
                raise NotFoundError(f"'{original}' not found in {path}")
            content = content.replace(original, replacement)
        else:
            lines = content.split("\n")
            if line_number < 0 or line_number >= len(lines):
                raise CorrectionError(f"Line number {line_number} is beyond file length")
            if original not in lines[line_number]:
                raise NotFoundError(f"'{original}' not found on line {line_number + 1} of {path}")
            lines[line_number] = lines[line_number].replace(original, replacement)
            content = "\n".join(lines)

        _write(path, content)
        return CorrectionResult(self.kind, True, [path], f"Rewrote '{original}' in {path}")


class ValidationSnippetHandler(CorrectionHandler):
    """Insert a validation snippet at the top of a named function."""

    kind = "path_validation_add"
    required_fields = ("file_path", "function_name", "snippet")

    @staticmethod
    def _anchor(function_name: str) -> re.Pattern:
        name = re.escape(function_name)
        return re.compile(
            rf"^(?P<indent>[ \t]*)(?:(?:async\s+)?def\s+{name}\b|(?:async\s+)?function\s+{name}\b"
            rf"|const\s+{name}\b|{name}\s*=)",
            re.MULTILINE,
        )

    def apply(self, descriptor: dict) -> CorrectionResult:
        path = str(descriptor["file_path"])
        function_name = descriptor["function_name"]
        snippet = descriptor["snippet"]
        comment = descriptor.get("comment_prefix", "#")

        content = _read(path)
        match = self._anchor(function_name).search(content)
        if not match:
            raise NotFoundError(f"Function {function_name} not found in {path}")
        if snippet in content:
            return CorrectionResult(self.kind, False, [path], "Validation already present")

        indent = descriptor.get("indent", match.group("indent") + "    ")
        line_end = content.find("\n", match.end())
        if line_end == -1:
            content += "\n"
            line_end = len(content) - 1

        block = [f"{indent}{comment} {VALIDATION_MARKER}"]
        block.extend(f"{indent}{line}" for line in snippet.splitlines())
        insertion = "\n".join(block) + "\n"
        content = content[: line_end + 1] + insertion + content[line_end + 1:]

        _write(path, content)
        return CorrectionResult(self.kind, True, [path], f"Added validation to {function_name}")


class ImportFixHandler(CorrectionHandler):
    """Replace an incorrect import statement in a template."""

    kind = "template_import_fix"
    required_fields = ("template_path", "incorrect_import", "correct_import")
    path_fields = ("template_path",)

    def apply(self, descriptor: dict) -> CorrectionResult:
        path = str(descriptor["template_path"])
        incorrect = descriptor["incorrect_import"]
        correct = descriptor["correct_import"]

        content = _read(path)
        if incorrect not in content:
            raise NotFoundError(f"Import '{incorrect}' not found in {path}")

        _write(path, content.replace(incorrect, correct))
        return CorrectionResult(self.kind, True, [path], f"Fixed import in {path}")


class ConfigValueHandler(CorrectionHandler):
    """Set a nested value in a JSON configuration file by dotted key."""

    kind = "mechanism_config_fix"
    required_fields = ("config_path", "config_key")
    path_fields = ("config_path",)

    def validate(self, descriptor: dict) -> None:
        super().validate(descriptor)
        if "correct_value" not in descriptor:
            raise CorrectionError(f"Missing required fields for {self.kind}: correct_value")

    def apply(self, descriptor: dict) -> CorrectionResult:
        path = str(descriptor["config_path"])
        keys = str(descriptor["config_key"]).split(".")
        value: Any = descriptor["correct_value"]

        try:
            config = json.loads(_read(path))
        except json.JSONDecodeError as e:
            raise CorrectionError(f"Config file {path} is not valid JSON: {e}") from e
        if not isinstance(config, dict):
            raise CorrectionError(f"Config file {path} is not a mapping")

        current = config
        for key in keys[:-1]:
            if key not in current:
                current[key] = {}
            current = current[key]
            if not isinstance(current, dict):
                raise CorrectionError(f"Config key '{key}' in {path} is not a mapping")
        current[keys[-1]] = value

        _write(path, json.dumps(config, indent=2))
        return CorrectionResult(self.kind, True, [path], f"Set {descriptor['config_key']} in {path}")


class TypeValidationHandler(CorrectionHandler):
    """Insert a type validation snippet at the top of a file or before an anchor."""

    kind = "type_validation_add"
    required_fields = ("file_path", "snippet")

    def apply(self, descriptor: dict) -> CorrectionResult:
        path = str(descriptor["file_path"])
        snippet = descriptor["snippet"]
        location = descriptor.get("insert_location", "top")
        anchor = descriptor.get("anchor", "export")

        content = _read(path)
        if location == "top":
            content = snippet + "\n" + content
        elif location == "before_export":
            index = content.find(anchor)
            if index == -1:
                raise NotFoundError(f"Anchor '{anchor}' not found in {path}")
            content = content[:index] + snippet + "\n" + content[index:]
        else:
            raise CorrectionError(f"Unknown insert location: {location}")

        _write(path, content)
        return CorrectionResult(self.kind, True, [path], f"Added type validation to {path}")


class CorrectionRegistry:
    """Maps correction-kind tags to their handlers."""

    def __init__(self):
        self._handlers: dict[str, CorrectionHandler] = {}

    def register(self, handler: CorrectionHandler) -> None:
        if not handler.kind:
            raise ValueError("Correction handler has no kind")
        self._handlers[handler.kind] = handler

    def get(self, kind: str) -> Optional[CorrectionHandler]:
        return self._handlers.get(kind)

    def kinds(self) -> list[str]:
        return sorted(self._handlers)

    def __contains__(self, kind: str) -> bool:
        return kind in self._handlers


def create_default_registry() -> CorrectionRegistry:
    """Registry holding the built-in correction kinds."""
    registry = CorrectionRegistry()
    for handler in (
        SyntaxRewriteHandler(),
        ValidationSnippetHandler(),
        ImportFixHandler(),
        ConfigValueHandler(),
        TypeValidationHandler(),
    ):
        registry.register(handler)
    return registry

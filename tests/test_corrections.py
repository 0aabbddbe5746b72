"""
Tests for the correction catalog.
"""

import json

import pytest

from selfcorrect.corrections import (
    VALIDATION_MARKER,
    ConfigValueHandler,
    CorrectionHandler,
    CorrectionRegistry,
    ImportFixHandler,
    SyntaxRewriteHandler,
    TypeValidationHandler,
    ValidationSnippetHandler,
    create_default_registry,
)
from selfcorrect.errors import CorrectionError, NotFoundError


# =============================================================================
# Registry
# =============================================================================

class TestRegistry:
    def test_default_kinds(self):
        registry = create_default_registry()
        assert registry.kinds() == [
            "command_syntax_fix",
            "mechanism_config_fix",
            "path_validation_add",
            "template_import_fix",
            "type_validation_add",
        ]
        assert "template_import_fix" in registry
        assert registry.get("nope") is None

    def test_register_custom_kind(self):
        class UppercaseHandler(CorrectionHandler):
            kind = "uppercase"

            def apply(self, descriptor):
                raise NotImplementedError

        registry = CorrectionRegistry()
        registry.register(UppercaseHandler())
        assert "uppercase" in registry

    def test_handler_without_kind_rejected(self):
        class Nameless(CorrectionHandler):
            def apply(self, descriptor):
                raise NotImplementedError

        with pytest.raises(ValueError):
            CorrectionRegistry().register(Nameless())


# =============================================================================
# Validation
# =============================================================================

class TestValidate:
    def test_missing_fields(self, temp_dir):
        with pytest.raises(CorrectionError, match="incorrect_import"):
            ImportFixHandler().validate({"template_path": str(temp_dir / "t.ts"), "correct_import": "x"})

    def test_missing_file(self, temp_dir):
        descriptor = {
            "template_path": str(temp_dir / "missing.ts"),
            "incorrect_import": "a",
            "correct_import": "b",
        }
        with pytest.raises(NotFoundError):
            ImportFixHandler().validate(descriptor)

    def test_not_found_is_file_not_found(self):
        assert issubclass(NotFoundError, FileNotFoundError)


# =============================================================================
# Handlers
# =============================================================================

class TestSyntaxRewrite:
    def test_rewrites_everywhere(self, temp_dir):
        script = temp_dir / "build.ps1"
        script.write_text("npm run build && npm run deploy\n")
        descriptor = {"file_path": str(script), "original": " && ", "replacement": "; "}

        handler = SyntaxRewriteHandler()
        handler.validate(descriptor)
        result = handler.apply(descriptor)

        assert result.changed
        assert script.read_text() == "npm run build; npm run deploy\n"

    def test_single_line(self, temp_dir):
        script = temp_dir / "run.sh"
        script.write_text("a && b\nc && d\n")
        SyntaxRewriteHandler().apply({
            "file_path": str(script), "original": "&&", "replacement": ";", "line_number": 1,
        })
        assert script.read_text() == "a && b\nc ; d\n"

    def test_line_out_of_range(self, temp_dir):
        script = temp_dir / "run.sh"
        script.write_text("a && b\n")
        with pytest.raises(CorrectionError):
            SyntaxRewriteHandler().apply({
                "file_path": str(script), "original": "&&", "replacement": ";", "line_number": 10,
            })

    def test_missing_original(self, temp_dir):
        script = temp_dir / "run.sh"
        script.write_text("echo hi\n")
        with pytest.raises(NotFoundError):
            SyntaxRewriteHandler().apply({"file_path": str(script), "original": "&&", "replacement": ";"})


class TestValidationSnippet:
    def test_inserts_after_python_def(self, temp_dir):
        source = temp_dir / "ops.py"
        source.write_text("def copy_files(src, dst):\n    shutil.copy(src, dst)\n")

        ValidationSnippetHandler().apply({
            "file_path": str(source),
            "function_name": "copy_files",
            "snippet": "if not os.path.exists(src):\n    raise FileNotFoundError(src)",
        })

        assert source.read_text() == (
            "def copy_files(src, dst):\n"
            f"    # {VALIDATION_MARKER}\n"
            "    if not os.path.exists(src):\n"
            "        raise FileNotFoundError(src)\n"
            "    shutil.copy(src, dst)\n"
        )

    def test_js_function_with_comment_prefix(self, temp_dir):
        source = temp_dir / "ops.js"
        source.write_text("function copyFiles(src) {\n  fs.copyFileSync(src);\n}\n")

        ValidationSnippetHandler().apply({
            "file_path": str(source),
            "function_name": "copyFiles",
            "snippet": "if (!fs.existsSync(src)) throw new Error(src);",
            "indent": "  ",
            "comment_prefix": "//",
        })

        lines = source.read_text().splitlines()
        assert lines[1] == f"  // {VALIDATION_MARKER}"
        assert lines[2] == "  if (!fs.existsSync(src)) throw new Error(src);"

    def test_already_present_is_noop(self, temp_dir):
        source = temp_dir / "ops.py"
        source.write_text("def f():\n    check()\n")
        result = ValidationSnippetHandler().apply({
            "file_path": str(source), "function_name": "f", "snippet": "check()",
        })
        assert result.changed is False
        assert source.read_text() == "def f():\n    check()\n"

    def test_missing_function(self, temp_dir):
        source = temp_dir / "ops.py"
        source.write_text("def other():\n    pass\n")
        with pytest.raises(NotFoundError):
            ValidationSnippetHandler().apply({
                "file_path": str(source), "function_name": "copy_files", "snippet": "check()",
            })


class TestImportFix:
    def test_replaces_import(self, temp_dir):
        template = temp_dir / "Button.tsx"
        template.write_text("import { cn } from './utils';\nexport const Button = () => null;\n")

        ImportFixHandler().apply({
            "template_path": str(template),
            "incorrect_import": "from './utils'",
            "correct_import": "from '@/lib/utils'",
        })

        assert "from '@/lib/utils'" in template.read_text()
        assert "./utils" not in template.read_text()

    def test_missing_import(self, temp_dir):
        template = temp_dir / "Button.tsx"
        template.write_text("export const Button = () => null;\n")
        with pytest.raises(NotFoundError):
            ImportFixHandler().apply({
                "template_path": str(template), "incorrect_import": "x", "correct_import": "y",
            })


class TestConfigValue:
    def test_sets_nested_value_creating_levels(self, temp_dir):
        config = temp_dir / "mechanism.json"
        config.write_text(json.dumps({"name": "loader"}))

        handler = ConfigValueHandler()
        descriptor = {"config_path": str(config), "config_key": "paths.templates.root", "correct_value": "src"}
        handler.validate(descriptor)
        handler.apply(descriptor)

        assert json.loads(config.read_text()) == {
            "name": "loader",
            "paths": {"templates": {"root": "src"}},
        }

    def test_requires_correct_value(self, temp_dir):
        config = temp_dir / "mechanism.json"
        config.write_text("{}")
        with pytest.raises(CorrectionError):
            ConfigValueHandler().validate({"config_path": str(config), "config_key": "a"})

    def test_falsy_value_allowed(self, temp_dir):
        config = temp_dir / "mechanism.json"
        config.write_text(json.dumps({"cache": {"enabled": True}}))
        descriptor = {"config_path": str(config), "config_key": "cache.enabled", "correct_value": False}
        ConfigValueHandler().validate(descriptor)
        ConfigValueHandler().apply(descriptor)
        assert json.loads(config.read_text()) == {"cache": {"enabled": False}}

    def test_non_mapping_intermediate(self, temp_dir):
        config = temp_dir / "mechanism.json"
        config.write_text(json.dumps({"paths": "flat"}))
        with pytest.raises(CorrectionError):
            ConfigValueHandler().apply({"config_path": str(config), "config_key": "paths.root", "correct_value": 1})

    def test_invalid_json(self, temp_dir):
        config = temp_dir / "mechanism.json"
        config.write_text("{broken")
        with pytest.raises(CorrectionError):
            ConfigValueHandler().apply({"config_path": str(config), "config_key": "a", "correct_value": 1})


class TestTypeValidation:
    def test_insert_at_top(self, temp_dir):
        source = temp_dir / "types.ts"
        source.write_text("export type Props = {};\n")
        TypeValidationHandler().apply({"file_path": str(source), "snippet": "// @ts-check"})
        assert source.read_text() == "// @ts-check\nexport type Props = {};\n"

    def test_insert_before_export(self, temp_dir):
        source = temp_dir / "types.ts"
        source.write_text("import x from 'x';\nexport default x;\n")
        TypeValidationHandler().apply({
            "file_path": str(source),
            "snippet": "assertType(x);",
            "insert_location": "before_export",
        })
        assert source.read_text() == "import x from 'x';\nassertType(x);\nexport default x;\n"

    def test_unknown_location(self, temp_dir):
        source = temp_dir / "types.ts"
        source.write_text("x\n")
        with pytest.raises(CorrectionError):
            TypeValidationHandler().apply({"file_path": str(source), "snippet": "y", "insert_location": "middle"})

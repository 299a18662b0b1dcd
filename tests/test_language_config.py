"""Tests for ralphdev.lib.language_config module."""

import pytest

from ralphdev.lib.errors import ValidationError
from ralphdev.lib.language_config import NO_VERIFY_COMMANDS, LanguageConfig, derive_verify_commands


class TestDeriveVerifyCommands:

    def test_typescript(self):
        commands = derive_verify_commands("typescript")
        assert commands[0] == "npx tsc --noEmit"
        assert "npm test" in commands

    def test_javascript_skips_tsc(self):
        assert "npx tsc --noEmit" not in derive_verify_commands("javascript")

    def test_python(self):
        assert any(c.startswith("pytest") for c in derive_verify_commands("python"))

    @pytest.mark.parametrize("tool,expected", [
        ("maven", ["mvn compile", "mvn test"]),
        ("Gradle", ["gradle compileJava", "gradle test"]),
    ])
    def test_java_depends_on_build_tool(self, tool, expected):
        assert derive_verify_commands("java", tool) == expected

    def test_java_without_build_tool(self):
        assert derive_verify_commands("java") == [NO_VERIFY_COMMANDS]

    def test_unknown_language(self):
        assert derive_verify_commands("cobol") == [NO_VERIFY_COMMANDS]


class TestLanguageConfig:

    def test_create_normalises(self):
        config = LanguageConfig.create("  Go ", framework=" ", build_tool="go")
        assert config.language == "go"
        assert config.framework is None
        assert config.verify_commands == ("go vet ./...", "go test ./...", "go build ./...")

    def test_explicit_commands_kept(self):
        config = LanguageConfig.create("python", verify_commands=["make check"])
        assert config.verify_commands == ("make check",)

    def test_blank_language_rejected(self):
        with pytest.raises(ValidationError):
            LanguageConfig.create("   ")

    def test_predicates(self):
        assert LanguageConfig.create("typescript").is_javascript_based()
        assert LanguageConfig.create("typescript").is_compiled()
        assert LanguageConfig.create("python").is_python()
        assert not LanguageConfig.unknown().is_compiled()

    def test_to_dict_omits_unset(self):
        data = LanguageConfig.create("rust", test_framework="cargo").to_dict()
        assert data == {
            "language": "rust",
            "testFramework": "cargo",
            "verifyCommands": ["cargo check", "cargo test", "cargo build"],
        }

    def test_from_dict(self):
        config = LanguageConfig.from_dict({"language": "java", "buildTool": "maven", "framework": "spring"})
        assert config.framework == "spring"
        assert config.verify_commands == ("mvn compile", "mvn test")
        assert LanguageConfig.from_dict(config.to_dict()) == config

    def test_from_dict_validates(self):
        with pytest.raises(ValidationError):
            LanguageConfig.from_dict({"framework": "react"})

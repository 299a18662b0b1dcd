"""
Language configuration value object, stored in index metadata.languageConfig.

Verify commands are derived from the language when not given explicitly.
ralph-dev only records them; running them is the driver's job.
"""

from dataclasses import dataclass, field
from typing import Any, Optional

from ralphdev.lib.errors import ValidationError
from ralphdev.lib.validate import validate

JS_LANGUAGES = ("javascript", "typescript")
COMPILED_LANGUAGES = ("typescript", "go", "rust", "java", "kotlin", "scala", "c++", "c")
NO_VERIFY_COMMANDS = 'echo "No verify commands configured"'


def _clean(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    return value or None


def derive_verify_commands(language: str, build_tool: Optional[str] = None) -> list[str]:
    commands = []
    if language in JS_LANGUAGES:
        if language == "typescript":
            commands.append("npx tsc --noEmit")
        commands += ['npm run lint || echo "No lint script"', "npm test", "npm run build"]
    elif language == "python":
        commands += ['python -m py_compile $(find . -name "*.py")', "pytest || python -m unittest"]
    elif language == "go":
        commands += ["go vet ./...", "go test ./...", "go build ./..."]
    elif language == "rust":
        commands += ["cargo check", "cargo test", "cargo build"]
    elif language == "java":
        build_tool = (build_tool or "").lower()
        if build_tool == "maven":
            commands += ["mvn compile", "mvn test"]
        elif build_tool == "gradle":
            commands += ["gradle compileJava", "gradle test"]
    return commands or [NO_VERIFY_COMMANDS]


@dataclass(frozen=True)
class LanguageConfig:
    language: str
    framework: Optional[str] = None
    test_framework: Optional[str] = None
    build_tool: Optional[str] = None
    verify_commands: tuple[str, ...] = field(default=())

    @classmethod
    def create(cls, language: str, framework: str | None = None, test_framework: str | None = None,
               build_tool: str | None = None, verify_commands: list[str] | None = None) -> "LanguageConfig":
        """Normalise and build. Raises ValidationError when language is blank."""
        if not language or not language.strip():
            raise ValidationError("language_config", "Language is required", "language")
        language = language.strip().lower()
        build_tool = _clean(build_tool)
        if verify_commands is None:
            verify_commands = derive_verify_commands(language, build_tool)
        return cls(
            language=language,
            framework=_clean(framework),
            test_framework=_clean(test_framework),
            build_tool=build_tool,
            verify_commands=tuple(verify_commands),
        )

    @classmethod
    def unknown(cls) -> "LanguageConfig":
        return cls(language="unknown")

    def is_javascript_based(self) -> bool:
        return self.language in JS_LANGUAGES

    def is_python(self) -> bool:
        return self.language == "python"

    def is_compiled(self) -> bool:
        return self.language in COMPILED_LANGUAGES

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"language": self.language}
        for key, value in (("framework", self.framework),
                           ("testFramework", self.test_framework),
                           ("buildTool", self.build_tool)):
            if value is not None:
                data[key] = value
        data["verifyCommands"] = list(self.verify_commands)
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "LanguageConfig":
        validate(data, "language_config")
        return cls.create(
            language=data["language"],
            framework=data.get("framework"),
            test_framework=data.get("testFramework"),
            build_tool=data.get("buildTool"),
            verify_commands=data.get("verifyCommands"),
        )

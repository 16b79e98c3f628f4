"""Tests for prompt loading and Jinja2 rendering."""

import textwrap
from pathlib import Path

import pytest
from jinja2 import UndefinedError

from utagent.messages import SystemTurn, UserTurn
from utagent.prompts import DEFAULT_TEMPLATE, render_prompt, split_prompt


@pytest.fixture()
def prompt_dir(tmp_path: Path) -> Path:
    """Create a temporary prompts directory."""
    d = tmp_path / "prompts"
    d.mkdir()
    return d


def _write(path: Path, content: str) -> Path:
    path.write_text(textwrap.dedent(content), encoding="utf-8")
    return path


class TestRenderPrompt:
    """Core render_prompt functionality."""

    def test_simple_substitution(self, prompt_dir: Path) -> None:
        f = _write(
            prompt_dir / "simple.yaml",
            """\
            name: simple
            messages:
              - role: system
                content: You write unit tests.
              - role: user
                content: "Write tests for {{ target_file }}"
            """,
        )
        turns = render_prompt(f, target_file="src/app.py")
        assert turns == [SystemTurn("You write unit tests."), UserTurn("Write tests for src/app.py")]

    def test_jinja_loop(self, prompt_dir: Path) -> None:
        f = _write(
            prompt_dir / "loop.yaml",
            """\
            name: loop_test
            messages:
              - role: user
                content: |
                  Uncovered methods:
                  {% for m in methods %}- {{ m }}
                  {% endfor %}
            """,
        )
        turns = render_prompt(f, methods=["parse", "render"])
        assert "- parse" in turns[0].text
        assert "- render" in turns[0].text

    def test_multiline_content_stripped(self, prompt_dir: Path) -> None:
        f = _write(
            prompt_dir / "whitespace.yaml",
            """\
            name: ws
            messages:
              - role: user
                content: |

                  Hello

            """,
        )
        assert render_prompt(f)[0].text == "Hello"

    def test_default_template(self) -> None:
        turns = render_prompt(DEFAULT_TEMPLATE, target_file="src/app.py", language="Python")
        system, user = split_prompt(turns)
        assert system is not None
        assert "for Python projects" in system
        assert "`src/app.py`" in user

    def test_default_template_optional_vars(self) -> None:
        turns = render_prompt(DEFAULT_TEMPLATE, target_file="a.py")
        system, user = split_prompt(turns)
        assert "projects" not in (system or "")
        assert "Place them under" not in user


class TestRenderPromptErrors:
    """Error cases: fail loud."""

    def test_missing_file(self) -> None:
        with pytest.raises(FileNotFoundError, match="not found"):
            render_prompt("/nonexistent/prompt.yaml")

    def test_missing_variable(self, prompt_dir: Path) -> None:
        f = _write(
            prompt_dir / "strict.yaml",
            """\
            messages:
              - role: user
                content: "{{ target_file }}"
            """,
        )
        with pytest.raises(UndefinedError):
            render_prompt(f)

    def test_missing_messages_key(self, prompt_dir: Path) -> None:
        f = _write(prompt_dir / "no_msgs.yaml", "name: broken\n")
        with pytest.raises(ValueError, match="missing 'messages'"):
            render_prompt(f)

    def test_messages_not_a_list(self, prompt_dir: Path) -> None:
        f = _write(
            prompt_dir / "bad_msgs.yaml",
            """\
            messages:
              role: user
              content: oops
            """,
        )
        with pytest.raises(ValueError, match="must be a list"):
            render_prompt(f)

    def test_message_missing_role(self, prompt_dir: Path) -> None:
        f = _write(
            prompt_dir / "no_role.yaml",
            """\
            messages:
              - content: no role here
            """,
        )
        with pytest.raises(ValueError, match="'role' and 'content'"):
            render_prompt(f)

    def test_assistant_role_rejected(self, prompt_dir: Path) -> None:
        f = _write(
            prompt_dir / "assistant.yaml",
            """\
            messages:
              - role: assistant
                content: I am the model
            """,
        )
        with pytest.raises(ValueError, match="unsupported role"):
            render_prompt(f)

    def test_not_a_mapping(self, prompt_dir: Path) -> None:
        f = _write(prompt_dir / "list.yaml", "- a\n")
        with pytest.raises(ValueError, match="must be a mapping"):
            render_prompt(f)


def test_split_prompt_joins_user_turns() -> None:
    system, user = split_prompt([SystemTurn("s"), UserTurn("a"), UserTurn("b")])
    assert system == "s"
    assert user == "a\n\nb"

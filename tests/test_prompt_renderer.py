import prompt_renderer
from jinja2 import DictLoader, Environment
from pydantic import BaseModel


def test_render_prompt_with_custom_env(monkeypatch):
    env = Environment(
        loader=DictLoader({"greet.j2": "Hello {{ name }}"}), autoescape=False
    )
    monkeypatch.setattr(prompt_renderer, "_env", env)
    result = prompt_renderer.render_prompt("greet.j2", {"name": "Bob"})
    assert result == "Hello Bob"


class Person(BaseModel):
    name: str
    nickname: str | None = None


def test_tojson_with_pydantic_object(monkeypatch):
    env = Environment(
        loader=DictLoader({"obj.j2": "{{ person | tojson }}"}),
        autoescape=False,
    )
    env.filters["tojson"] = prompt_renderer._tojson
    monkeypatch.setattr(prompt_renderer, "_env", env)
    result = prompt_renderer.render_prompt("obj.j2", {"person": Person(name="Alice")})
    assert result == '{"name": "Alice"}'


def test_tojson_keeps_non_ascii_and_lists_sets():
    assert prompt_renderer._tojson({"word": "Привіт"}) == '{"word": "Привіт"}'
    assert prompt_renderer._tojson(frozenset({"a"})) == '["a"]'
    assert prompt_renderer._tojson(("x", "y"), indent=2) == '[\n  "x",\n  "y"\n]'


def test_template_exists_for_shipped_prompts():
    assert prompt_renderer.template_exists("planner/system.j2")
    assert prompt_renderer.template_exists("patch/pov_normalize_third.j2")
    assert not prompt_renderer.template_exists("patch/unknown.j2")


def test_patch_templates_share_base():
    text = prompt_renderer.render_prompt(
        "patch/strip_meta_lines.j2",
        {"chapters": "# Chapter 1: Dock\n\nText.", "language_rules": "Use English."},
    )
    assert "# Chapter 1: Dock" in text

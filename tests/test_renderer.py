"""
Tests for template rendering and the prompt library.
"""
from promptrelay.prompting.renderer import PromptLibrary, render_template


class TestRenderTemplate:
    def test_substitutes_placeholders(self):
        assert render_template("Hello {{name}}", {"name": "Alice"}) == "Hello Alice"

    def test_whitespace_inside_braces(self):
        assert render_template("Hi {{ name }}!", {"name": "Bob"}) == "Hi Bob!"

    def test_missing_placeholder_renders_empty(self):
        assert render_template("Hello {{name}}, from {{team}}", {"name": "Alice"}) == "Hello Alice, from "

    def test_none_renders_empty(self):
        assert render_template("[{{x}}]", {"x": None}) == "[]"

    def test_structured_values_render_as_json(self):
        rendered = render_template("Data: {{orders}}", {"orders": [{"id": 1}]})
        assert rendered == 'Data: [{"id": 1}]'

    def test_numbers_render_as_text(self):
        assert render_template("{{n}} items", {"n": 3}) == "3 items"

    def test_repeated_placeholder(self):
        assert render_template("{{a}}-{{a}}", {"a": "x"}) == "x-x"

    def test_non_placeholder_braces_left_alone(self):
        template = 'Return JSON like {"key": "value"} for {{topic}}'
        assert render_template(template, {"topic": "cats"}) == 'Return JSON like {"key": "value"} for cats'

    def test_hyphenated_key(self):
        assert render_template("Hi {{first-name}}", {"first-name": "Alice"}) == "Hi Alice"

    def test_dotted_key_present_and_missing(self):
        rendered = render_template("Order {{order.id}} / {{missing}}", {"order.id": "42"})
        assert rendered == "Order 42 / "

    def test_unresolved_keys_all_render_empty(self):
        rendered = render_template("[{{a-b}}][{{c.d}}][{{ e f }}]", {})
        assert rendered == "[][][]"

    def test_empty_template(self):
        assert render_template("", {"a": 1}) == ""


class TestPromptLibrary:
    def test_unknown_name_is_literal_template(self):
        library = PromptLibrary({"greet": "Hello {{name}}"})
        assert library.resolve("greet") == "Hello {{name}}"
        assert library.resolve("Say {{thing}}") == "Say {{thing}}"

    def test_from_dir_loads_yaml(self, tmp_path):
        (tmp_path / "summary.yaml").write_text("slug: summarize\ntemplate: 'Summarize {{text}}'\n")
        (tmp_path / "bare.yaml").write_text("template: 'Bare {{x}}'\n")
        (tmp_path / "broken.yaml").write_text("slug: broken\n")

        library = PromptLibrary.from_dir(str(tmp_path))

        assert library.names() == ["bare", "summarize"]
        assert library.resolve("summarize") == "Summarize {{text}}"

    def test_missing_dir_gives_empty_library(self, tmp_path):
        library = PromptLibrary.from_dir(str(tmp_path / "nope"))
        assert library.names() == []

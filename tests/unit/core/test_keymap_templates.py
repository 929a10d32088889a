# tests/unit/core/test_keymap_templates.py
"""Tests for payload templates and the key maps derived from them."""

import json

import pytest

from clearbridge.contracts import TemplateRenderError
from clearbridge.core.keybag import KeyBag, build_key_bag
from clearbridge.core.keymap import KeyMappingProvider, apply_key_map, derive_key_map
from clearbridge.core.templates import PayloadTemplate, normalize_placeholders, placeholder_path

# =============================================================================
# Placeholder handling
# =============================================================================


class TestPlaceholders:
    def test_legacy_spellings_normalized(self) -> None:
        """${X} and {X} become {{ X }}; JSON braces are untouched."""
        assert normalize_placeholders('{"a": ${Subject.Id}}') == '{"a": {{ Subject.Id }}}'
        assert normalize_placeholders('{"a": {Program.Id}}') == '{"a": {{ Program.Id }}}'
        assert normalize_placeholders('{"a": {{ SubjectId }}}') == '{"a": {{ SubjectId }}}'

    def test_placeholder_path_single_expression_only(self) -> None:
        """Only text that is exactly one placeholder yields a path."""
        assert placeholder_path("{{ Subject.Id }}") == "Subject.Id"
        assert placeholder_path("${ProgramId}") == "ProgramId"
        assert placeholder_path("{{ ProviderRequest.FirstName | json }}") == "ProviderRequest.FirstName"
        assert placeholder_path("Dear {{ Subject.FirstName }}") is None
        assert placeholder_path("plain") is None

# =============================================================================
# PayloadTemplate rendering
# =============================================================================


class TestPayloadTemplate:
    def test_renders_bundle(self) -> None:
        """Placeholders resolve against the named bundle."""
        template = PayloadTemplate('{"subjectId": {{ SubjectId }}, "name": {{ Subject.FirstName | json }}}')
        body = template.render({"SubjectId": 7, "Subject": {"FirstName": 'A "quoted" name'}})
        assert json.loads(body) == {"subjectId": 7, "name": 'A "quoted" name'}

    def test_missing_field_renders_empty(self) -> None:
        """Undefined values render blank rather than failing."""
        template = PayloadTemplate('{"x": "{{ Missing.Field.Deep }}"}')
        assert json.loads(template.render({})) == {"x": ""}

    def test_json_looking_output_must_parse(self) -> None:
        """Output that starts like JSON but does not parse is rejected."""
        template = PayloadTemplate('{"x": {{ Missing.Field }} }')
        with pytest.raises(TemplateRenderError, match="not valid JSON"):
            template.render({})

    def test_sandbox_blocks_attribute_escape(self) -> None:
        """Calling through dunder attributes is refused."""
        template = PayloadTemplate("{{ SubjectId.__class__.__subclasses__() }}")
        with pytest.raises(TemplateRenderError):
            template.render({"SubjectId": 1})

    def test_invalid_syntax_fails_at_construction(self) -> None:
        """Syntax errors surface when the template is built."""
        with pytest.raises(TemplateRenderError, match="Invalid template syntax"):
            PayloadTemplate("{% if %}")

    def test_legacy_spelling_renders(self) -> None:
        """Legacy placeholders render the same as Jinja2 ones."""
        bundle = {"A": 1, "B": "x"}
        assert PayloadTemplate("${A}-{B}").render(bundle) == PayloadTemplate("{{ A }}-{{ B }}").render(bundle) == "1-x"


# =============================================================================
# Key map derivation
# =============================================================================


class TestDeriveKeyMap:
    def test_explicit_key_map_wins(self) -> None:
        """A keyMap object in the template is used verbatim."""
        template = json.dumps({"keyMap": {"externalBatchId": "ProgramId"}, "externalBatchId": "{{ ProgramId }}"})
        assert derive_key_map(template) == {"externalBatchId": "ProgramId"}

    def test_json_template_inverted(self) -> None:
        """Quoted placeholders map both bare name and dotted path."""
        template = json.dumps({"case": {"ref": "{{ ProgramId }}"}, "who": "{{ Subject.Id }}"})
        key_map = derive_key_map(template)
        assert key_map["ref"] == "ProgramId"
        assert key_map["case.ref"] == "ProgramId"
        assert key_map["who"] == "Subject.Id"

    def test_regex_scan_for_non_json_templates(self) -> None:
        """Unquoted placeholders are found by the pair scan."""
        template = '{"batch": {{ ProgramId }}, "person": ${SubjectId}}'
        assert derive_key_map(template) == {"batch": "ProgramId", "person": "SubjectId"}

    def test_no_placeholders_gives_empty_map(self) -> None:
        """Static templates derive nothing."""
        assert derive_key_map('{"static": true}') == {}

    def test_provider_caches_per_template(self) -> None:
        """Repeated lookups return equal but independent maps."""
        provider = KeyMappingProvider()
        first = provider.key_map_for('{"batch": {{ ProgramId }}}')
        first["mutated"] = "yes"
        assert provider.key_map_for('{"batch": {{ ProgramId }}}') == {"batch": "ProgramId"}
        assert provider.key_map_for(None) == {}


class TestApplyKeyMap:
    def test_populates_internal_names(self) -> None:
        """External values are copied under the internal name."""
        bag = KeyBag()
        bag.put("batch", 3)
        assert apply_key_map(bag, {"batch": "ProgramId"}) == 1
        assert bag.get_int("ProgramId") == 3

    def test_existing_internal_value_kept(self) -> None:
        """Internal names already present are never overwritten."""
        bag = build_key_bag('{"programId": 5, "batchId": 3}')
        assert apply_key_map(bag, {"batchId": "ProgramId"}) == 0
        assert bag.get_int("ProgramId") == 5

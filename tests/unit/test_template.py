"""
Unit tests for template resolution.
"""

import pytest
from services.orchestrator.engine.template import TemplateResolver, build_template_context
from shared.exceptions import TemplateResolutionError
from shared.types import Contact


def test_resolve_contact_tokens():
    """Contact attributes and custom fields are available to templates"""
    contact = Contact(id="c1", name="Ana Silva", phone="+351900000001", custom_fields={"city": "Porto"})
    context = build_template_context(contact, {})

    resolver = TemplateResolver()

    assert resolver.render("Hi {{ first_name }} from {{ city }}", context) == "Hi Ana from Porto"
    assert resolver.render("{{ contact.phone }}", context) == "+351900000001"


def test_fallback_name():
    """Missing or disabled contact names use the fallback"""
    resolver = TemplateResolver()
    nameless = Contact(id="c1")

    assert resolver.render("Hi {{ name }}", build_template_context(nameless, {})) == "Hi there"
    assert resolver.render("Hi {{ name }}", build_template_context(None, {}, fallback_name="friend")) == "Hi friend"
    named = Contact(id="c2", name="Rui")
    assert resolver.render("Hi {{ name }}", build_template_context(named, {}, use_contact_name=False)) == "Hi there"


def test_later_sources_win():
    contact = Contact(id="c1", name="Ana", custom_fields={"coupon": "OLD"})
    context = build_template_context(contact, {"coupon": "NEW10"}, extra={"discount": "10%"})

    assert TemplateResolver().render("{{ coupon }} {{ discount }}", context) == "NEW10 10%"


def test_unknown_tokens_render_empty():
    assert TemplateResolver().render("Hi {{ nickname }}!", {}) == "Hi !"


def test_plain_text_is_returned_unchanged():
    assert TemplateResolver().render("No tokens here", {}) == "No tokens here"
    assert TemplateResolver().render(None, {}) == ""


def test_syntax_error_raises():
    """Broken templates raise TemplateResolutionError"""
    with pytest.raises(TemplateResolutionError):
        TemplateResolver().render("Hi {{ name", {"name": "Ana"})


@pytest.mark.parametrize("text", ["Total {{ 1 / 0 }}", "{{ name + 1 }}"])
def test_runtime_errors_raise(text):
    """Errors raised while rendering surface as TemplateResolutionError"""
    with pytest.raises(TemplateResolutionError):
        TemplateResolver().render(text, {"name": "Ana"})


def test_render_body_parses_json():
    resolver = TemplateResolver()
    context = {"id": "c1", "score": 7}

    assert resolver.render_body('{"contact": "{{ id }}", "score": {{ score }}}', context) == {"contact": "c1", "score": 7}
    assert resolver.render_body("id={{ id }}", context) == "id=c1"
    assert resolver.render_body("   ", context) is None


def test_resolve_nested_structures():
    resolved = TemplateResolver().resolve(
        {"headers": {"X-Contact": "{{ id }}"}, "tags": ["{{ tag }}", 3]},
        {"id": "c1", "tag": "vip"},
    )

    assert resolved == {"headers": {"X-Contact": "c1"}, "tags": ["vip", 3]}

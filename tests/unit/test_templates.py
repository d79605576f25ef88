"""Tests for template rendering and the template store."""

import pytest

from healthchain_notify.core.models import Channel
from healthchain_notify.notifications.errors import NotFoundError, RenderError
from healthchain_notify.notifications.templates import TemplateRenderer


class TestTemplateRenderer:
    def test_substitutes_placeholders(self):
        renderer = TemplateRenderer()
        assert renderer.render("Hello {{name}}!", {"name": "Alice"}) == "Hello Alice!"

    def test_missing_variable_renders_empty(self):
        renderer = TemplateRenderer()
        assert renderer.render("Hello {{name}}!", {}) == "Hello !"

    def test_chained_missing_variable_renders_empty(self):
        renderer = TemplateRenderer()
        assert renderer.render("Donor: {{donor.name}}.", {}) == "Donor: ."

    def test_body_without_placeholders_is_unchanged(self):
        renderer = TemplateRenderer()
        assert renderer.render("Static text", {"name": "Alice"}) == "Static text"

    def test_invalid_syntax_raises_render_error(self):
        renderer = TemplateRenderer()
        with pytest.raises(RenderError) as exc_info:
            renderer.render("Hello {{ name", {"name": "Alice"})
        assert exc_info.value.http_status == 422

    def test_no_escaping_by_default(self):
        renderer = TemplateRenderer()
        assert renderer.render("{{v}}", {"v": "<b>x</b>"}) == "<b>x</b>"

    def test_autoescape_escapes_markup(self):
        renderer = TemplateRenderer(autoescape=True)
        assert renderer.render("{{v}}", {"v": "<b>x</b>"}) == "&lt;b&gt;x&lt;/b&gt;"

    def test_compiled_bodies_are_cached(self):
        renderer = TemplateRenderer(cache_size=2)
        renderer.render("a {{x}}", {"x": "1"})
        renderer.render("a {{x}}", {"x": "2"})
        renderer.render("b {{x}}", {"x": "1"})
        renderer.render("c {{x}}", {"x": "1"})
        assert len(renderer._compiled) == 2
        assert "a {{x}}" not in renderer._compiled


class TestTemplateStore:
    async def test_upsert_and_resolve(self, template_store):
        created = await template_store.upsert("welcome", Channel.EMAIL, "Hello {{name}}!")
        resolved = await template_store.resolve("welcome", Channel.EMAIL)

        assert resolved.id == created.id
        assert resolved.body == "Hello {{name}}!"
        assert resolved.channel == Channel.EMAIL

    async def test_upsert_replaces_body(self, template_store):
        first = await template_store.upsert("welcome", Channel.SMS, "v1")
        second = await template_store.upsert("welcome", Channel.SMS, "v2")

        assert second.id == first.id
        assert (await template_store.resolve("welcome", Channel.SMS)).body == "v2"

    async def test_resolve_missing_raises_not_found(self, template_store):
        with pytest.raises(NotFoundError) as exc_info:
            await template_store.resolve("welcome", Channel.PUSH)
        assert str(exc_info.value) == "Template 'welcome' for channel 'PUSH' not found"

    async def test_resolve_is_channel_scoped(self, template_store):
        await template_store.upsert("welcome", Channel.EMAIL, "Hello")
        with pytest.raises(NotFoundError):
            await template_store.resolve("welcome", Channel.SMS)

    async def test_list_templates_filters_by_channel(self, template_store, welcome_templates):
        all_templates = await template_store.list_templates()
        sms_templates = await template_store.list_templates(Channel.SMS)

        assert len(all_templates) == 3
        assert [t.channel for t in sms_templates] == [Channel.SMS]

"""Tests for message templates."""

import json
import logging
import pytest
import tempfile
from pathlib import Path

from lead_automation.core.models import Channel
from lead_automation.errors import UnknownTemplate
from lead_automation.follow_up.templates import (
    MessageTemplate,
    TemplateId,
    TemplateStore,
    substitute,
)


@pytest.fixture
def temp_data_dir():
    """Create temporary data directory."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def store():
    return TemplateStore({
        "welcome": MessageTemplate(
            id="welcome",
            name="Welcome",
            email_subject="Hi {customer_name}",
            email_body="Hello {customer_name}, visit us at {dealership_address}.",
        ),
    })


class TestRendering:
    """Tests for placeholder substitution."""

    def test_all_variables_present(self, store):
        rendered = store.render_message("welcome", Channel.EMAIL, {
            "customer_name": "Ana",
            "dealership_address": "1 Main St",
        })
        assert rendered.subject == "Hi Ana"
        assert rendered.body == "Hello Ana, visit us at 1 Main St."
        assert rendered.missing == []

    def test_missing_variable_becomes_empty(self, store, caplog):
        """Test an absent variable renders as "" and logs a warning."""
        with caplog.at_level(logging.WARNING):
            rendered = store.render_message("welcome", Channel.EMAIL, {"customer_name": "Ana"})

        assert rendered.body == "Hello Ana, visit us at ."
        assert rendered.missing == ["dealership_address"]
        assert "dealership_address" in caplog.text

    def test_none_counts_as_missing(self):
        missing = []
        assert substitute("{a}-{b}", {"a": 1, "b": None}, missing) == "1-"
        assert missing == ["b"]

    def test_rendering_is_repeatable(self, store):
        variables = {"customer_name": "Ana", "dealership_address": "1 Main St"}
        first = store.render("welcome", Channel.EMAIL, variables)
        assert store.render("welcome", Channel.EMAIL, variables) == first

    def test_substituted_braces_are_not_rendered_again(self):
        missing = []
        assert substitute("{a}", {"a": "{b}", "b": "x"}, missing) == "{b}"


class TestLookup:
    """Tests for template lookup failures."""

    def test_unknown_template_raises(self, store):
        with pytest.raises(UnknownTemplate) as exc:
            store.render("nope", Channel.EMAIL, {})
        assert exc.value.template_id == "nope"

    def test_missing_channel_raises(self, store):
        """Test a template without SMS content is unknown for SMS."""
        with pytest.raises(UnknownTemplate) as exc:
            store.render("welcome", Channel.SMS, {})
        assert exc.value.channel == "sms"

    def test_placeholders(self, store):
        assert store.placeholders("welcome", Channel.EMAIL) == ["customer_name", "dealership_address"]


class TestDefaultTemplates:
    """Tests for the built-in dealership templates."""

    def test_every_id_has_email_and_sms(self):
        store = TemplateStore.default()
        for template_id in TemplateId:
            for channel in Channel:
                assert store.get(template_id.value, channel).content(channel)

    def test_email_has_subject(self):
        store = TemplateStore.default()
        rendered = store.render_message(
            TemplateId.INITIAL_INQUIRY.value,
            Channel.EMAIL,
            {"vehicle_make": "Honda", "vehicle_model": "Civic"},
        )
        assert rendered.subject == "Thank you for your interest in Honda Civic"
        assert rendered.missing

    def test_overrides_from_file(self, temp_data_dir):
        path = temp_data_dir / "templates.json"
        path.write_text(json.dumps({
            "initial_inquiry": {"sms": "Hi {customer_name}, thanks for reaching out!"},
            "holiday_sale": {"name": "Holiday", "email": {"subject": "Sale", "body": "Deals, {customer_name}"}},
        }))

        store = TemplateStore.from_file(path)

        assert store.render("initial_inquiry", Channel.SMS, {"customer_name": "Ana"}) == \
            "Hi Ana, thanks for reaching out!"
        # Email content untouched by an SMS-only override
        default_body = TemplateStore.default().get("initial_inquiry", Channel.EMAIL).email_body
        assert store.get("initial_inquiry", Channel.EMAIL).email_body == default_body
        assert store.render("holiday_sale", Channel.EMAIL, {"customer_name": "Ana"}) == "Deals, Ana"
        assert "holiday_sale" in store.template_ids()

    def test_from_file_without_path(self):
        assert TemplateStore.from_file(None).template_ids() == TemplateStore.default().template_ids()

"""Tests for prompt building and classifier response parsing."""

from datetime import date

import pytest

from app.assistant.prompts import (
    ClassifierError,
    ComposeError,
    build_classifier_prompt,
    build_compose_prompt,
    build_query_prompt,
    extract_json_block,
    fill_name_placeholder,
    fill_recipient_placeholder,
    parse_composed_email,
    parse_labeled_response,
    parse_query_response,
    parse_suggestions,
    summarize_content,
    summarize_history,
)
from app.assistant.schemas import (
    EmailIntent,
    Message,
    QueryIntent,
    SmalltalkIntent,
    UnknownIntent,
)


class TestExtractJsonBlock:
    def test_plain_object(self):
        assert extract_json_block('{"type": "query"}') == '{"type": "query"}'

    def test_prose_and_code_fence_around_object(self):
        raw = 'Sure! Here you go:\n```json\n{"type": "smalltalk", "reply": "hi"}\n```\nAnything else?'
        assert extract_json_block(raw) == '{"type": "smalltalk", "reply": "hi"}'

    def test_nested_objects(self):
        raw = 'x {"mongoQuery": {"a": {"$gt": 1}}} y'
        assert extract_json_block(raw) == '{"mongoQuery": {"a": {"$gt": 1}}}'

    def test_braces_inside_strings_are_ignored(self):
        raw = '{"body": "Hi {{name}}, see } and {", "type": "email"}'
        assert extract_json_block(raw) == raw

    def test_escaped_quote_inside_string(self):
        raw = '{"reply": "she said \\"}\\" loudly"}'
        assert extract_json_block(raw) == raw

    def test_unbalanced_prefix_skipped(self):
        raw = 'broken { here, then {"type": "query"}'
        assert extract_json_block(raw) == '{"type": "query"}'

    def test_no_object(self):
        assert extract_json_block("I cannot help with that.") is None
        assert extract_json_block("") is None


class TestParseLabeledResponse:
    def test_smalltalk(self):
        result = parse_labeled_response(
            '{"type": "smalltalk", "category": "greeting", "reply": "Hello!"}'
        )
        assert isinstance(result, SmalltalkIntent)
        assert result.reply == "Hello!"

    def test_email_with_camel_case_fields(self):
        result = parse_labeled_response(
            '{"type": "email", "recipientName": "John Smith", "recipientEmail": "", '
            '"subject": "Hi", "body": "Hello {{name}}", "reply": "Draft for <recipientName>"}'
        )
        assert isinstance(result, EmailIntent)
        assert result.recipient_name == "John Smith"
        assert result.intent == "send_email"

    def test_query_with_numeric_estimate(self):
        result = parse_labeled_response(
            '{"type": "query", "mongoQuery": {"temperature": "cold"}, "explanation": "Cold leads", '
            '"suggestedFields": ["email"], "estimatedResults": 12}'
        )
        assert isinstance(result, QueryIntent)
        assert result.mongo_query == {"temperature": "cold"}
        assert result.estimated_results == "12"

    def test_tag_is_normalized(self):
        result = parse_labeled_response('{"type": " SmallTalk ", "category": "thanks", "reply": "Anytime"}')
        assert isinstance(result, SmalltalkIntent)

    def test_curly_quotes_are_tolerated(self):
        result = parse_labeled_response("{“type”: “smalltalk”, “category”: “greeting”, “reply”: “Hi”}")
        assert isinstance(result, SmalltalkIntent)

    def test_typographic_quotes_inside_strings_are_kept(self):
        result = parse_labeled_response(
            '{"type":"smalltalk","category":"greeting","reply":"You can say “hi” anytime"}'
        )
        assert result.reply == "You can say “hi” anytime"

    def test_unknown_tag_is_kept(self):
        result = parse_labeled_response('{"type": "weather", "city": "Oslo"}')
        assert isinstance(result, UnknownIntent)
        assert result.type == "weather"
        assert result.raw["city"] == "Oslo"

    def test_no_json_raises(self):
        with pytest.raises(ClassifierError, match="No JSON object"):
            parse_labeled_response("Sorry, I can't do that.")

    def test_invalid_json_raises(self):
        with pytest.raises(ClassifierError, match="Invalid JSON"):
            parse_labeled_response('{"type": "query", "mongoQuery": {temperature: cold}}')

    def test_missing_type_raises(self):
        with pytest.raises(ClassifierError, match="no intent type"):
            parse_labeled_response('{"reply": "hello"}')

    def test_missing_required_field_raises(self):
        with pytest.raises(ClassifierError, match="mongoQuery|mongo_query"):
            parse_labeled_response(
                '{"type": "query", "explanation": "x", "suggestedFields": [], "estimatedResults": "1"}'
            )

    def test_empty_smalltalk_reply_raises(self):
        with pytest.raises(ClassifierError):
            parse_labeled_response('{"type": "smalltalk", "category": "greeting", "reply": ""}')

    def test_code_operators_rejected(self):
        with pytest.raises(ClassifierError):
            parse_labeled_response(
                '{"type": "query", "mongoQuery": {"$or": [{"$where": "sleep(1000)"}]}, '
                '"explanation": "x", "suggestedFields": [], "estimatedResults": "1"}'
            )


class TestParseQueryResponse:
    def test_type_defaults_to_query(self):
        result = parse_query_response(
            '{"mongoQuery": {"isActive": true}, "explanation": "Active", '
            '"suggestedFields": ["status"], "estimatedResults": "many"}'
        )
        assert isinstance(result, QueryIntent)
        assert result.suggested_fields == ["status"]

    def test_non_query_raises(self):
        with pytest.raises(ClassifierError, match="Expected a query"):
            parse_query_response('{"type": "smalltalk", "category": "greeting", "reply": "hi"}')


class TestParseSuggestions:
    def test_examples_list(self):
        assert parse_suggestions('Here you go: {"examples": ["Hot leads", 3, " Leads in Ohio "]}') == [
            "Hot leads",
            "Leads in Ohio",
        ]

    @pytest.mark.parametrize("raw", ['{"examples": "Hot leads"}', '{"examples": []}', "no json"])
    def test_unusable_response_raises(self, raw):
        with pytest.raises(ClassifierError):
            parse_suggestions(raw)


class TestParseComposedEmail:
    def test_complete_draft(self):
        composed = parse_composed_email(
            '```json\n{"intent": "send_followup", "recipients": ["j@x.com"], '
            '"subject": "Follow-up", "body": "Hi {{name}}"}\n```'
        )
        assert composed.intent == "send_followup"
        assert composed.recipients == ["j@x.com"]

    def test_missing_subject_raises(self):
        with pytest.raises(ComposeError, match="Incomplete"):
            parse_composed_email('{"intent": "x", "recipients": ["j@x.com"], "body": "b"}')

    def test_empty_recipients_raises(self):
        with pytest.raises(ComposeError):
            parse_composed_email('{"intent": "x", "recipients": [], "subject": "s", "body": "b"}')

    def test_not_json_raises(self):
        with pytest.raises(ComposeError):
            parse_composed_email("I drafted something nice for you.")

    def test_typographic_quotes_in_body_are_kept(self):
        composed = parse_composed_email(
            '{"intent": "send_followup", "recipients": ["j@x.com"], '
            '"subject": "Our “spring” offer", "body": "It’s ready."}'
        )
        assert composed.subject == "Our “spring” offer"
        assert composed.body == "It’s ready."


class TestHistorySummary:
    def test_text_is_collapsed_and_truncated(self):
        assert summarize_content("hello\n  there") == "hello there"
        long = "word " * 200
        summary = summarize_content(long, max_chars=20)
        assert summary.endswith("...")
        assert len(summary) <= 23

    def test_structured_content_is_counted(self):
        assert summarize_content([{"a": 1}, {"a": 2}]) == "[2 records]"
        assert summarize_content({"kind": "email_draft", "subject": "x"}) == "[email draft]"
        assert summarize_content({"a": 1}) == "[1 fields]"

    def test_empty_history(self):
        assert summarize_history([]) == "(no previous messages)"

    def test_roles_are_labeled(self):
        history = [Message(role="user", content="hi"), Message(role="assistant", content=[{"a": 1}])]
        assert summarize_history(history) == "user: hi\nassistant: [1 records]"


class TestPromptBuilding:
    def test_classifier_prompt_has_dates_history_and_message(self):
        system, user = build_classifier_prompt(
            "cold leads from July",
            [Message(role="user", content="hello")],
            today=date(2025, 8, 14),
        )
        assert "2025-08-14" in user
        assert "user: hello" in user
        assert "cold leads from July" in user
        assert "{{" not in system
        assert '"type"' in system

    def test_query_prompt(self):
        system, user = build_query_prompt("hot leads", today=date(2025, 1, 2))
        assert '"hot leads"' in user
        assert "2025-01-02" in user
        assert "mongoQuery" in system

    def test_compose_prompt_includes_lead_details(self):
        prompt = build_compose_prompt(
            "send mail to John about pricing",
            {"firstName": "John", "lastName": "Smith", "email": "j@x.com", "company": {"name": "Acme"}},
        )
        assert "Name: John Smith" in prompt
        assert "Email: j@x.com" in prompt
        assert "Company: Acme" in prompt
        assert "send mail to John about pricing" in prompt

    def test_compose_prompt_without_company(self):
        prompt = build_compose_prompt("mail to Ann", {"firstName": "Ann", "email": "a@x.com"})
        assert "Company: \n" in prompt


class TestPlaceholders:
    def test_recipient_placeholder(self):
        assert fill_recipient_placeholder("Draft for <recipientName>.", "Ann Lee") == "Draft for Ann Lee."

    def test_name_placeholder_tolerates_spacing(self):
        assert fill_name_placeholder("Hi {{ name }}, and {{name}}", "Ann") == "Hi Ann, and Ann"

    def test_name_placeholder_kept_without_name(self):
        assert fill_name_placeholder("Hi {{name}}", "") == "Hi {{name}}"

    def test_name_with_backslash_is_inserted_literally(self):
        assert fill_name_placeholder("Hi {{name}}", "A\\1B") == "Hi A\\1B"

"""Unit tests for node data validation and the node catalog."""

import pytest

from ivrflow.config import NodeType
from ivrflow.models import InputPayload, TransferPayload, parse_node_payload
from ivrflow.nodes import get_node_registry, validate_node


class TestValidateNode:
    """Tests for validate_node."""

    def test_transfer_requires_destination(self):
        result = validate_node(NodeType.TRANSFER, {})

        assert result.is_valid is False
        assert "destination is required" in result.errors

    def test_transfer_destination_must_be_e164(self):
        result = validate_node("transfer", {"destination": "call-me-maybe"})

        assert result.is_valid is False
        assert any("E.164" in e for e in result.errors)

    def test_valid_transfer(self):
        result = validate_node("transfer", {"destination": "+442071234567", "timeout": 20})

        assert result.is_valid is True
        assert result.errors == []

    def test_greeting_text_required_in_tts_mode(self):
        assert validate_node("greeting", {}).is_valid is False
        assert validate_node("greeting", {"text": "Hello"}).is_valid is True

    def test_greeting_audio_url_satisfies_text(self):
        result = validate_node("greeting", {"audioUrl": "https://cdn.example.com/hello.mp3"})

        assert result.is_valid is True

    def test_greeting_upload_mode_needs_no_text(self):
        assert validate_node("greeting", {"mode": "upload"}).is_valid is True

    @pytest.mark.parametrize("num_digits", [0, 21, "many"])
    def test_input_num_digits_range(self, num_digits):
        result = validate_node("input", {"prompt": "Press a key", "numDigits": num_digits})

        assert result.is_valid is False

    def test_input_without_prompt_warns(self):
        result = validate_node("input", {})

        assert result.is_valid is True
        assert result.warnings

    def test_unknown_node_type(self):
        result = validate_node("teleport", {})

        assert result.is_valid is False
        assert "Unknown node type" in result.errors[0]

    def test_conditional_operator_must_be_known(self):
        result = validate_node("conditional", {"variable": "tier", "operator": "approximately"})

        assert result.is_valid is False

    def test_to_dict(self):
        data = validate_node("sms", {}).to_dict()

        assert data["isValid"] is False
        assert "message is required" in data["errors"]


class TestNodePayloads:
    """Tests for the per-type payload models."""

    def test_camel_and_snake_aliases(self):
        camel = parse_node_payload(NodeType.INPUT, {"numDigits": 4, "maxAttempts": 2, "saveAs": "pin"})
        snake = parse_node_payload(NodeType.INPUT, {"num_digits": 4, "max_attempts": 2, "save_as": "pin"})

        assert isinstance(camel, InputPayload)
        assert camel.num_digits == snake.num_digits == 4
        assert camel.max_attempts == snake.max_attempts == 2
        assert camel.save_as == snake.save_as == "pin"

    def test_invalid_input_message_alias(self):
        payload = parse_node_payload(NodeType.INPUT, {"invalidInputMessage": "Try again"})

        assert payload.invalid_message == "Try again"

    def test_unknown_keys_are_kept(self):
        payload = parse_node_payload(NodeType.TRANSFER, {"destination": "+15551234567", "label": "Sales"})

        assert isinstance(payload, TransferPayload)
        assert payload.model_extra["label"] == "Sales"

    def test_input_timing_left_to_workflow(self):
        payload = parse_node_payload(NodeType.INPUT, {"prompt": "Press 1."})

        assert payload.timeout_seconds is None
        assert payload.max_attempts is None


class TestNodeRegistry:
    """Tests for the node catalog."""

    def test_every_type_is_registered(self):
        registry = get_node_registry()

        for node_type in NodeType:
            assert registry.get(node_type) is not None

    def test_catalog_groups_by_category(self):
        catalog = get_node_registry().to_catalog()

        assert "interaction" in catalog
        types = {n["type"] for group in catalog.values() for n in group}
        assert {"greeting", "input", "transfer", "end"} <= types

    def test_handles_for_transfer(self):
        handles = get_node_registry().handles_for(NodeType.TRANSFER)

        assert "failed" in handles
        assert "answered" in handles

    def test_open_handles_in_catalog(self):
        catalog = get_node_registry().to_catalog()
        by_type = {n["type"]: n for group in catalog.values() for n in group}

        assert by_type["input"]["openHandles"] is True
        assert by_type["transfer"]["openHandles"] is False

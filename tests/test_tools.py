"""
Tests for the tool registry

Tests cover:
- Parameter declarations and JSON input schemas
- Argument validation and defaults
- Dispatch results and the structured error payload
"""
import json
from datetime import datetime, timezone

import pytest

from mailbridge.server.tools import ToolParam, ToolRegistry, ToolResult, to_json
from mailbridge.utils.errors import FolderExistsError


async def echo(args):
    return args


@pytest.fixture
def registry():
    registry = ToolRegistry()
    registry.register(
        "get_emails",
        echo,
        description="List emails",
        category="reading",
        params=[
            ToolParam("folder", description="Folder path", default="INBOX"),
            ToolParam("limit", "number", default=50),
        ],
    )
    registry.register(
        "move_email",
        echo,
        category="actions",
        params=[
            ToolParam("email_id", required=True),
            ToolParam("target_folder", required=True),
        ],
    )
    registry.register(
        "get_logs",
        echo,
        category="system",
        params=[ToolParam("level", enum=["debug", "info", "warn", "error"])],
    )
    return registry


class TestToolParam:
    """Test parameter declarations"""

    def test_unknown_type_rejected(self):
        with pytest.raises(ValueError):
            ToolParam("x", "integer")

    def test_schema(self):
        param = ToolParam("email_ids", "array", description="IDs", items="string")

        assert param.to_schema() == {"type": "array", "description": "IDs", "items": {"type": "string"}}

    @pytest.mark.parametrize(
        "param_type,value,expected",
        [
            ("string", "x", True),
            ("string", 1, False),
            ("number", 3, True),
            ("number", 2.5, True),
            ("number", True, False),
            ("boolean", False, True),
            ("boolean", "true", False),
            ("object", {"a": 1}, True),
            ("array", [], True),
            ("array", "a,b", False),
        ],
    )
    def test_matches(self, param_type, value, expected):
        assert ToolParam("p", param_type).matches(value) is expected

    def test_array_item_types(self):
        param = ToolParam("ids", "array", items="string")

        assert param.matches(["1", "2"])
        assert not param.matches(["1", 2])


class TestRegistry:
    """Test registration and lookup"""

    def test_duplicate_registration(self, registry):
        with pytest.raises(ValueError):
            registry.register("get_emails", echo)

    def test_lookup(self, registry):
        assert registry.exists("move_email")
        assert not registry.exists("send_fax")
        assert registry.get_metadata("send_fax") is None
        assert len(registry) == 3

    def test_listing_keeps_registration_order(self, registry):
        assert [m.name for m in registry.list_tools()] == ["get_emails", "move_email", "get_logs"]
        assert [m.name for m in registry.list_tools("actions")] == ["move_email"]

    def test_categories(self, registry):
        assert registry.list_categories() == ["actions", "reading", "system"]
        assert registry.get_tools_by_category()["reading"] == ["get_emails"]

    def test_input_schema(self, registry):
        schema = registry.get_metadata("move_email").input_schema()

        assert schema["type"] == "object"
        assert set(schema["properties"]) == {"email_id", "target_folder"}
        assert schema["required"] == ["email_id", "target_folder"]

    def test_schema_without_required(self, registry):
        schema = registry.get_metadata("get_emails").input_schema()

        assert "required" not in schema
        assert schema["properties"]["folder"]["default"] == "INBOX"


class TestValidation:
    """Test argument validation"""

    def test_defaults_filled(self, registry):
        meta = registry.get_metadata("get_emails")

        assert registry.validate_arguments(meta, None) == {"folder": "INBOX", "limit": 50}

    def test_unknown_arguments_dropped(self, registry):
        meta = registry.get_metadata("get_emails")

        assert registry.validate_arguments(meta, {"limit": 5, "page": 2}) == {"folder": "INBOX", "limit": 5}

    @pytest.mark.asyncio
    async def test_missing_required(self, registry):
        """Test a missing argument yields a validation error payload"""
        # Test
        result = await registry.dispatch("move_email", {"email_id": "7"})

        # Verify
        assert result.is_error
        payload = json.loads(result.text)
        assert payload["error"] == "Missing required arguments: target_folder"
        assert payload["error_type"] == "MissingRequiredFieldError"
        assert payload["category"] == "validation"
        assert payload["details"]["missing_args"] == ["target_folder"]

    @pytest.mark.asyncio
    async def test_null_counts_as_missing(self, registry):
        result = await registry.dispatch("move_email", {"email_id": None, "target_folder": None})

        assert json.loads(result.text)["details"]["missing_args"] == ["email_id", "target_folder"]

    @pytest.mark.asyncio
    async def test_wrong_type(self, registry):
        result = await registry.dispatch("get_emails", {"limit": "ten"})

        payload = json.loads(result.text)
        assert payload["error"] == "Parameter 'limit' must be of type number"
        assert payload["error_type"] == "InvalidParameterError"

    @pytest.mark.asyncio
    async def test_enum(self, registry):
        result = await registry.dispatch("get_logs", {"level": "trace"})

        assert json.loads(result.text)["error"] == "Parameter 'level' must be one of: debug, info, warn, error"


class TestDispatch:
    """Test handler invocation and result shaping"""

    @pytest.mark.asyncio
    async def test_unknown_tool(self, registry):
        result = await registry.dispatch("send_fax", {})

        payload = json.loads(result.text)
        assert result.is_error
        assert payload["error"] == "Unknown tool: send_fax"
        assert payload["category"] == "not_found"

    @pytest.mark.asyncio
    async def test_dict_result_is_json(self, registry):
        result = await registry.dispatch("move_email", {"email_id": "7", "target_folder": "Trash"})

        assert not result.is_error
        assert json.loads(result.text) == {"email_id": "7", "target_folder": "Trash"}

    @pytest.mark.asyncio
    async def test_string_and_tool_results_pass_through(self):
        registry = ToolRegistry()

        async def text(args):
            return "Folder 'Work' created successfully"

        async def explicit(args):
            return ToolResult("Failed to send email: refused", is_error=True)

        registry.register("text", text)
        registry.register("explicit", explicit)

        assert (await registry.dispatch("text")).text == "Folder 'Work' created successfully"
        result = await registry.dispatch("explicit")
        assert result.is_error and result.text == "Failed to send email: refused"

    @pytest.mark.asyncio
    async def test_domain_error_payload(self):
        """Test a domain error keeps its type, category and details"""
        # Setup
        registry = ToolRegistry()

        async def failing(args):
            raise FolderExistsError("Folder 'Sent' already exists", details={"folder": "Sent"})

        registry.register("create_folder", failing)

        # Test
        result = await registry.dispatch("create_folder", {})

        # Verify
        assert json.loads(result.text) == {
            "error": "Folder 'Sent' already exists",
            "error_type": "FolderExistsError",
            "category": "conflict",
            "details": {"folder": "Sent"},
        }

    @pytest.mark.asyncio
    async def test_unexpected_error_payload(self):
        registry = ToolRegistry()

        async def failing(args):
            raise RuntimeError("boom")

        registry.register("explode", failing)

        payload = json.loads((await registry.dispatch("explode")).text)

        assert payload["error"] == "boom"
        assert payload["error_type"] == "RuntimeError"
        assert payload["category"] == "unknown"
        assert payload["details"] == {"context": "Tool execution failed: explode"}


class TestToJson:
    def test_serializes_domain_values(self):
        class Item:
            def to_dict(self):
                return {"id": "1"}

        data = {
            "item": Item(),
            "when": datetime(2025, 10, 1, tzinfo=timezone.utc),
            "raw": b"hi",
            "tags": ("a", "b"),
        }

        assert json.loads(to_json(data)) == {
            "item": {"id": "1"},
            "when": "2025-10-01T00:00:00+00:00",
            "raw": "aGk=",
            "tags": ["a", "b"],
        }

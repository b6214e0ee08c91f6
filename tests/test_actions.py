"""Tests for the action registry and built-in actions."""

import json

import pytest
import requests

from flowengine.actions import (
    HttpRequestAction,
    HttpRequestError,
    NotificationAction,
    custom_script,
    data_transform,
    file_operation,
    register_default_actions,
)
from flowengine.config import get_testing_config
from flowengine.core.actions import ActionRegistry
from flowengine.core.exceptions import ActionRegistryError

from conftest import echo_action


def make_response(status_code=200, body=None, text=None, content_type="application/json"):
    response = requests.Response()
    response.status_code = status_code
    response.url = "http://service.test/resource"
    response.headers["Content-Type"] = content_type
    if body is not None:
        response._content = json.dumps(body).encode("utf-8")
    else:
        response._content = (text or "").encode("utf-8")
    return response


class FakeSession:
    """Stands in for requests.Session; replays queued outcomes."""

    def __init__(self, *outcomes):
        self.outcomes = list(outcomes)
        self.calls = []

    def request(self, method, url, **kwargs):
        self.calls.append({"method": method, "url": url, **kwargs})
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


class TestActionRegistry:
    """Test cases for ActionRegistry."""

    def test_register_and_call(self):
        registry = ActionRegistry()
        registry.register_action("echo", echo_action, "Echo action")

        assert registry.action_exists("echo")
        assert registry.list_actions() == {"echo": "Echo action"}
        assert registry.call_action("echo", {"payload": 1}, None) == 1

    def test_duplicate_registration_rejected_unless_replaced(self):
        registry = ActionRegistry()
        registry.register_action("echo", echo_action)

        with pytest.raises(ActionRegistryError):
            registry.register_action("echo", lambda config, data: "other")

        registry.register_action("echo", lambda config, data: "other", replace=True)
        assert registry.call_action("echo", {}, None) == "other"

    def test_signature_must_accept_config_and_input(self):
        registry = ActionRegistry()

        with pytest.raises(ActionRegistryError):
            registry.register_action("bad", lambda config: config)

    def test_unknown_action(self):
        registry = ActionRegistry()

        with pytest.raises(ActionRegistryError) as exc_info:
            registry.call_action("missing", {}, None)

        assert "Unsupported action type: missing" in exc_info.value.message

    def test_variables_passed_as_copy_only_when_declared(self):
        registry = ActionRegistry()
        received = {}

        def mutating(config, input_data, variables=None):
            variables["touched"] = True
            received.update(variables)
            return None

        registry.register_action("mutating", mutating)
        original = {"a": 1}
        registry.call_action("mutating", {}, None, variables=original)

        assert received == {"a": 1, "touched": True}
        assert original == {"a": 1}

    def test_unregister(self):
        registry = ActionRegistry()
        registry.register_action("echo", echo_action)

        assert registry.unregister_action("echo") is True
        assert registry.unregister_action("echo") is False
        assert not registry.action_exists("echo")

    def test_default_actions_registered(self):
        registry = ActionRegistry()

        register_default_actions(registry, get_testing_config())

        assert set(registry.list_actions()) == {
            "http_request", "file_operation", "data_transform", "notification", "custom_script"
        }


class TestHttpRequestAction:
    """Test cases for the http_request action."""

    def test_json_response_is_parsed(self):
        session = FakeSession(make_response(body={"status": "ok"}))
        action = HttpRequestAction(timeout_ms=2000, session=session)

        result = action({"url": "http://service.test/resource"}, {"ignored": True})

        assert result == {"status": "ok"}
        call = session.calls[0]
        assert call["method"] == "GET"
        assert call["timeout"] == 2.0
        assert "json" not in call

    def test_post_defaults_body_to_input(self):
        session = FakeSession(make_response(body={"created": True}))
        action = HttpRequestAction(session=session)

        action({"url": "http://service.test/items", "method": "post", "timeout": 500}, {"name": "x"})

        call = session.calls[0]
        assert call["method"] == "POST"
        assert call["json"] == {"name": "x"}
        assert call["timeout"] == 0.5

    def test_non_json_response_is_described(self):
        session = FakeSession(make_response(text="plain", content_type="text/plain"))
        action = HttpRequestAction(session=session)

        result = action({"url": "http://service.test/"}, None)

        assert result["status"] == 200
        assert result["body"] == "plain"

    def test_client_error_fails_without_retry(self):
        session = FakeSession(make_response(status_code=404, text="missing"))
        action = HttpRequestAction(retry_count=3, session=session)

        with pytest.raises(HttpRequestError) as exc_info:
            action({"url": "http://service.test/missing"}, None)

        assert exc_info.value.status_code == 404
        assert len(session.calls) == 1

    def test_connection_error_is_retried(self):
        session = FakeSession(
            requests.ConnectionError("refused"),
            make_response(body={"second": "try"}),
        )
        action = HttpRequestAction(session=session)

        result = action({"url": "http://service.test/", "retryCount": 1}, None)

        assert result == {"second": "try"}
        assert len(session.calls) == 2

    def test_invalid_method_rejected(self):
        action = HttpRequestAction(session=FakeSession())

        with pytest.raises(ValueError):
            action({"url": "http://service.test/", "method": "FETCH"}, None)


class TestFileOperation:
    """Test cases for the file_operation action."""

    def test_write_read_copy_move_delete(self, tmp_path):
        source = tmp_path / "nested" / "data.json"
        copy_target = tmp_path / "copy.json"
        move_target = tmp_path / "moved.json"

        written = file_operation(
            {"operation": "write", "sourcePath": str(source), "createDirectories": True}, {"a": 1}
        )
        read = file_operation({"operation": "read", "sourcePath": str(source)}, None)
        file_operation({"operation": "copy", "sourcePath": str(source), "targetPath": str(copy_target)}, None)
        file_operation({"operation": "move", "sourcePath": str(copy_target), "targetPath": str(move_target)}, None)
        deleted = file_operation({"operation": "delete", "sourcePath": str(move_target)}, None)

        assert written["bytesWritten"] > 0
        assert json.loads(read["content"]) == {"a": 1}
        assert not copy_target.exists()
        assert not move_target.exists()
        assert deleted["deleted"] is True

    def test_explicit_content_wins_over_input(self, tmp_path):
        target = tmp_path / "note.txt"

        file_operation({"operation": "write", "sourcePath": str(target), "content": "hello"}, {"a": 1})

        assert target.read_text(encoding="utf-8") == "hello"

    def test_missing_file_fails(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            file_operation({"operation": "read", "sourcePath": str(tmp_path / "absent.txt")}, None)

    def test_copy_requires_target(self, tmp_path):
        source = tmp_path / "a.txt"
        source.write_text("x", encoding="utf-8")

        with pytest.raises(ValueError):
            file_operation({"operation": "copy", "sourcePath": str(source)}, None)


class TestDataTransform:
    """Test cases for the data_transform action."""

    def test_json_round_trip(self):
        text = data_transform({"transformType": "json_stringify"}, {"a": [1, 2]})

        assert data_transform({"transformType": "json_parse"}, text) == {"a": [1, 2]}

    def test_csv_parse_and_stringify(self):
        rows = data_transform({"transformType": "csv_parse"}, "name,age\nada,36\nalan,41\n")

        assert rows == [{"name": "ada", "age": "36"}, {"name": "alan", "age": "41"}]
        assert data_transform({"transformType": "csv_stringify"}, rows) == "name,age\nada,36\nalan,41\n"

    def test_pick_with_dotted_fields(self):
        data = {"user": {"id": 7, "email": "a@b.c"}, "noise": True}

        result = data_transform({"transformType": "pick", "fields": ["user.id", "noise"]}, data)

        assert result == {"user.id": 7, "noise": True}

    def test_input_variable_source(self):
        result = data_transform(
            {"transformType": "json_parse", "inputVariable": "raw"}, None, variables={"raw": "[1]"}
        )

        assert result == [1]

    def test_unsupported_transform(self):
        with pytest.raises(ValueError):
            data_transform({"transformType": "xml_parse"}, "<a/>")


class TestNotificationAction:
    """Test cases for the notification action."""

    def test_console_notification(self):
        result = NotificationAction(session=FakeSession())({"message": "done"}, None)

        assert result == {"delivered": True, "channel": "console", "message": "done"}

    def test_webhook_posts_message_and_data(self):
        session = FakeSession(make_response(body={}))
        action = NotificationAction(session=session)

        result = action(
            {"notificationType": "webhook", "webhookUrl": "http://hooks.test/x", "message": "hi"},
            {"n": 1},
        )

        assert result["delivered"] is True
        assert session.calls[0]["json"] == {"message": "hi", "subject": None, "data": {"n": 1}}

    def test_email_is_not_supported(self):
        with pytest.raises(RuntimeError):
            NotificationAction(session=FakeSession())({"notificationType": "email", "message": "x"}, None)


class TestCustomScript:
    """Test cases for the custom_script action."""

    def test_expression_sees_input_and_variables(self):
        result = custom_script(
            {"script": "input['x'] * variables['factor'] + len([1, 2])"},
            {"x": 3},
            variables={"factor": 10},
        )

        assert result == 32

    @pytest.mark.parametrize("script", [
        "import os",
        "__import__('os')",
        "().__class__.__bases__",
        "[c for c in ().__class__.__subclasses__()]",
    ])
    def test_unsafe_scripts_rejected(self, script):
        with pytest.raises((ValueError, NameError)):
            custom_script({"script": script}, None)

    @pytest.mark.parametrize("script", [
        "'{0.__class__}'.format(input)",
        "['{0.__class__.__base__}' for _ in range(1)][0].format(input)",
    ])
    def test_format_strings_cannot_reach_dunder_attributes(self, script):
        with pytest.raises(ValueError, match="dunder"):
            custom_script({"script": script}, {"a": 1})

    def test_variables_are_read_only(self):
        with pytest.raises(AttributeError):
            custom_script({"script": "variables.pop('a')"}, None, variables={"a": 1})

    def test_only_python_supported(self):
        with pytest.raises(ValueError):
            custom_script({"language": "javascript", "script": "1"}, None)

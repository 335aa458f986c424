import pytest

from mauticdeployer.errors_catalog import actionable_error


def test_actionable_error_formats_message_with_suggested_action():
    message = actionable_error("container_unhealthy", name="mautibox_db", timeout="180")

    assert "Container mautibox_db did not become healthy within 180s." in message
    assert "Suggested action:" in message
    assert "docker logs mautibox_db" in message


def test_actionable_error_rejects_unknown_code():
    with pytest.raises(KeyError):
        actionable_error("not_a_code")

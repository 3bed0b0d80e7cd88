"""
Unit tests for custom exception classes.
Tests exception hierarchy, user messages, and error propagation.
"""

import pytest

from batchat.core.exceptions import (
    ChatError,
    ChatValidationError,
    HandleConflictError,
    NotFoundError,
    PermissionDeniedError,
    PreconditionFailed,
    StoreUnavailableError,
)


class TestChatError:
    """Tests for base ChatError class."""

    def test_chat_error_with_default_user_message(self):
        """Test ChatError uses default user message when not provided."""
        error = ChatError("Internal error details")

        assert str(error) == "Internal error details"
        assert error.user_message == "An error occurred while processing your request."

    def test_chat_error_with_custom_user_message(self):
        """Test ChatError accepts custom user message."""
        error = ChatError("Internal details", user_message="Custom user message")

        assert error.user_message == "Custom user message"

    def test_chat_error_can_be_raised_and_caught(self):
        with pytest.raises(ChatError) as exc_info:
            raise ChatError("internal", user_message="user facing")

        assert exc_info.value.user_message == "user facing"


class TestHandleConflictError:
    """Tests for HandleConflictError class."""

    def test_carries_handle(self):
        error = HandleConflictError("climbers")

        assert error.handle == "climbers"
        assert "climbers" in str(error)
        assert error.user_message == "Handle is already taken."

    def test_is_chat_error(self):
        assert isinstance(HandleConflictError("x"), ChatError)


class TestOtherErrors:
    """Tests for the remaining error kinds."""

    def test_not_found_default_message(self):
        assert NotFoundError("User u1 not found").user_message == "The requested item could not be found."

    def test_store_unavailable_default_message(self):
        error = StoreUnavailableError("timeout")

        assert error.user_message == "The service is temporarily unavailable. Please try again."

    def test_validation_error_defaults_to_message(self):
        assert ChatValidationError("Cannot send an empty message.").user_message == "Cannot send an empty message."

    def test_permission_denied_is_validation_error(self):
        error = PermissionDeniedError("u1 is not an admin")

        assert isinstance(error, ChatValidationError)
        assert error.user_message == "You are not allowed to do that."

    def test_precondition_failed_is_not_a_chat_error(self):
        """Store-level conflicts are resolved by callers, never shown to users."""
        error = PreconditionFailed("chats/c1")

        assert error.path == "chats/c1"
        assert not isinstance(error, ChatError)

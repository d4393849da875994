"""Tests for the error taxonomy."""

import pytest

from sail_operator.errors import (
    ConditionTranslationError,
    ErrorList,
    MultiError,
    NotFoundError,
    SailOperatorError,
    TransientError,
    ValidationError,
    find_error,
    is_transient_error,
    is_validation_error,
)
from sail_operator.reconciler import Result, handle_reconcile_error


class TestErrors:
    """Test cases for error messages and classification."""

    def test_prefixes(self):
        """Test validation and transient errors carry their message prefix."""
        assert str(ValidationError("spec.version not set")) == "validation error: spec.version not set"
        assert str(TransientError("not yet")) == "transient error: not yet"

    def test_cause_is_kept(self):
        """Test the original error is attached as the cause."""
        cause = OSError("boom")
        err = ValidationError("bad", cause=cause)
        assert err.__cause__ is cause
        assert err.message == "bad"

    def test_not_found_message(self):
        """Test NotFoundError names the kind and key."""
        assert str(NotFoundError("Deployment", "istiod", "istio-system")) == "Deployment istio-system/istiod not found"
        assert str(NotFoundError("Istio", "default")) == "Istio default not found"

    def test_classification(self):
        """Test the classification helpers."""
        assert is_validation_error(ValidationError("x"))
        assert not is_validation_error(TransientError("x"))
        assert is_transient_error(TransientError("x"))
        assert find_error(NotFoundError("Istio", "x"), NotFoundError) is not None

    def test_classification_looks_inside_errors(self):
        """Test joined errors and causes are searched."""
        assert is_transient_error(MultiError([ValueError("a"), TransientError("b")]))
        assert is_validation_error(SailOperatorError("wrapped", cause=ValidationError("x")))
        assert find_error(MultiError([ValueError("a")]), NotFoundError) is None
        assert find_error(MultiError([ValueError("a"), TransientError("b")]), TransientError).message == "b"

    def test_translation_error_is_not_operator_error(self):
        """Test programming errors are outside the handled hierarchy."""
        assert not issubclass(ConditionTranslationError, SailOperatorError)


class TestErrorList:
    """Test cases for ErrorList."""

    def test_empty(self):
        """Test no errors gives None."""
        errs = ErrorList()
        errs.add(None)
        assert errs.error() is None
        assert len(errs) == 0

    def test_single_error_is_returned_as_is(self):
        """Test a single error is not wrapped."""
        err = ValidationError("x")
        errs = ErrorList()
        errs.add(err)
        assert errs.error() is err

    def test_multiple_errors_are_joined(self):
        """Test several errors become a MultiError joining all messages."""
        errs = ErrorList()
        errs.add(ValueError("a"))
        errs.add(ValueError("b"))
        err = errs.error()
        assert isinstance(err, MultiError)
        assert str(err) == "a; b"
        assert len(err.errors) == 2


class TestHandleReconcileError:
    """Test cases for handle_reconcile_error."""

    def test_no_error_keeps_result(self):
        """Test the result passes through without an error."""
        result = Result(requeue_after=5)
        assert handle_reconcile_error(None, result) is result

    def test_validation_error_is_not_retried(self):
        """Test validation errors are swallowed into the result."""
        assert handle_reconcile_error(ValidationError("x"), Result()) == Result()

    def test_transient_error_requeues(self):
        """Test transient errors request a requeue."""
        assert handle_reconcile_error(TransientError("x"), Result()) == Result(requeue=True)

    def test_other_errors_are_raised(self):
        """Test other errors propagate for backoff."""
        with pytest.raises(NotFoundError):
            handle_reconcile_error(NotFoundError("Istio", "x"), Result())

    def test_joined_transient_error_requeues(self):
        """Test a transient error inside a MultiError is still transient."""
        err = MultiError([TransientError("no active revision"), TransientError("no active revision")])
        assert handle_reconcile_error(err, Result()) == Result(requeue=True)

    def test_joined_other_errors_are_raised(self):
        """Test a MultiError without classified errors propagates."""
        err = MultiError([ValueError("a"), NotFoundError("Istio", "x")])
        with pytest.raises(MultiError):
            handle_reconcile_error(err, Result())

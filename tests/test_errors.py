"""Tests for errors.py -- exception hierarchy and categorization."""

import pytest

from library_digest.errors import (
    ConfigError,
    DiskSpaceError,
    ExtractionError,
    InferenceError,
    LaneClosedError,
    LaneFullError,
    PipelineError,
    ProgressError,
    TransportError,
    categorize_error,
)
from library_digest.models import ErrorCategory


class TestExceptionHierarchy:
    def test_all_inherit_from_pipeline_error(self):
        for cls in (
            ConfigError, ProgressError, TransportError, DiskSpaceError,
            ExtractionError, InferenceError, LaneClosedError, LaneFullError,
        ):
            assert issubclass(cls, PipelineError)

    def test_pipeline_error_is_exception(self):
        assert issubclass(PipelineError, Exception)


class TestAttributes:
    def test_transport_error_path(self):
        e = TransportError("550 gone", path="/a.pdf")
        assert e.path == "/a.pdf"
        assert str(e) == "550 gone"

    def test_inference_error_status_code(self):
        e = InferenceError("HTTP 503", status_code=503)
        assert e.status_code == 503
        assert InferenceError("boom").status_code is None


class TestCategorizeError:
    @pytest.mark.parametrize(
        "exc",
        [
            TransportError("reset"),
            DiskSpaceError("full"),
            InferenceError("timeout"),
            LaneFullError("full"),
        ],
    )
    def test_transient(self, exc):
        assert categorize_error(exc) == ErrorCategory.TRANSIENT

    @pytest.mark.parametrize(
        "exc",
        [
            ExtractionError("bad pdf"),
            ConfigError("no host"),
            ValueError("bug"),
            LaneClosedError("closed"),
        ],
    )
    def test_permanent(self, exc):
        assert categorize_error(exc) == ErrorCategory.PERMANENT

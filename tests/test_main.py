"""Tests for the operator entry point and structured logging."""

import json
import logging
import os
import sys
from pathlib import Path
from unittest.mock import patch

import pytest

from eks_operator.main import JsonFormatter, main


def make_record(**extra: object) -> logging.LogRecord:
    record = logging.LogRecord("eks_operator.test", logging.INFO, __file__, 1, "Created %s", ("vpc",), None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestJsonFormatter:
    """Tests for JsonFormatter."""

    def test_basic_fields(self) -> None:
        data = json.loads(JsonFormatter().format(make_record()))

        assert data["level"] == "INFO"
        assert data["message"] == "Created vpc"
        assert data["logger"] == "eks_operator.test"
        assert data["timestamp"].endswith("Z")

    def test_extra_fields_included(self) -> None:
        """Test that extra={} fields appear at the top level."""
        data = json.loads(JsonFormatter().format(make_record(vpc_id="vpc-1", counts={"created": 2})))

        assert data["vpc_id"] == "vpc-1"
        assert data["counts"] == {"created": 2}
        assert "msg" not in data
        assert "args" not in data

    def test_unserializable_values_stringified(self) -> None:
        data = json.loads(JsonFormatter().format(make_record(path=Path("/tmp/cluster.yaml"))))

        assert data["path"] == "/tmp/cluster.yaml"

    def test_exception_included(self) -> None:
        try:
            raise ValueError("bad")
        except ValueError:
            record = logging.LogRecord(
                "eks_operator.test", logging.ERROR, __file__, 1, "failed", (), exc_info=sys.exc_info()
            )

        data = json.loads(JsonFormatter().format(record))

        assert "ValueError: bad" in data["exception"]


class TestMain:
    """Tests for startup failures of the operator process."""

    @pytest.mark.asyncio
    async def test_missing_cluster_config(self) -> None:
        with patch.dict(os.environ, {}, clear=True):
            assert await main() == 1

    @pytest.mark.asyncio
    async def test_invalid_cluster_config(self, tmp_path: Path) -> None:
        path = tmp_path / "cluster.yaml"
        path.write_text("- not a mapping\n")

        with patch.dict(os.environ, {"CLUSTER_CONFIG": str(path)}, clear=True):
            assert await main() == 1

"""Tests for StructuredLogger."""

import json
import logging
import uuid

from songreel.utils.logging import StructuredLogger, get_logger


def test_entries_are_json_with_bound_context(caplog):
    log = StructuredLogger(logging.getLogger("songreel.test")).bind(job_id="abc", stage="analyzing")

    with caplog.at_level(logging.INFO, logger="songreel.test"):
        log.info("stage_started", attempt=2)

    entry = json.loads(caplog.records[-1].getMessage())
    assert entry == {"event": "stage_started", "job_id": "abc", "stage": "analyzing", "attempt": 2}


def test_bind_does_not_mutate_parent(caplog):
    parent = StructuredLogger(logging.getLogger("songreel.test"))
    parent.bind(job_id="abc")

    with caplog.at_level(logging.INFO, logger="songreel.test"):
        parent.warning("plain")

    assert json.loads(caplog.records[-1].getMessage()) == {"event": "plain"}


def test_non_json_values_are_stringified(caplog):
    job_id = uuid.uuid4()
    with caplog.at_level(logging.INFO, logger="songreel.test"):
        StructuredLogger(logging.getLogger("songreel.test")).error("failed", job_id=job_id)

    assert json.loads(caplog.records[-1].getMessage())["job_id"] == str(job_id)


def test_get_logger_installs_single_handler():
    first = get_logger("songreel.test.handlers")
    get_logger("songreel.test.handlers")

    assert isinstance(first, StructuredLogger)
    assert len(logging.getLogger("songreel.test.handlers").handlers) == 1

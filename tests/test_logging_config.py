"""Tests for structured JSON logging."""

import json
import logging

from lfmrec.api.logging_config import JSONFormatter


def make_record(**extra) -> logging.LogRecord:
    record = logging.LogRecord(
        name="lfmrec.recommender.train",
        level=logging.INFO,
        pathname=__file__,
        lineno=1,
        msg="iteration %d train finish",
        args=(3,),
        exc_info=None,
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_json_formatter_includes_extra_fields():
    line = JSONFormatter().format(make_record(iteration=3, train_mse=0.5))
    data = json.loads(line)

    assert data["message"] == "iteration 3 train finish"
    assert data["level"] == "INFO"
    assert data["logger"] == "lfmrec.recommender.train"
    assert data["iteration"] == 3
    assert data["train_mse"] == 0.5
    assert data["timestamp"].endswith("Z")


def test_json_formatter_writes_nan_as_null():
    line = JSONFormatter().format(make_record(test_auc=float("nan"), score=float("inf")))
    data = json.loads(line)
    assert data["test_auc"] is None
    assert data["score"] is None

from __future__ import annotations

from datetime import datetime, timezone

import pytest

from taskflow.services.errors import InputValidationError
from taskflow.services.task_request import (
    TASK_REQUIRED_MESSAGE,
    parse_instant,
    require_user,
    to_request_payload,
)


def test_task_is_required() -> None:
    for body in (None, [], {}, {"task": ""}, {"task": "   "}, {"task": 3}):
        with pytest.raises(InputValidationError) as excinfo:
            to_request_payload(body)
        assert str(excinfo.value) == TASK_REQUIRED_MESSAGE


def test_fields_are_trimmed_and_lenient() -> None:
    request = to_request_payload(
        {
            "task": "  Plan the offsite  ",
            "context": "   ",
            "userId": " user-1 ",
            "deadline": "not a date",
            "timezone": "Mars/Olympus",
            "maxSteps": "5",
        },
        max_steps_limit=12,
    )

    assert request.task == "Plan the offsite"
    assert request.context is None
    assert request.user_id == "user-1"
    assert request.deadline is None
    assert request.timezone is None
    assert request.max_steps is None


def test_max_steps_is_clamped() -> None:
    assert to_request_payload({"task": "t", "max_steps": 0}, max_steps_limit=12).max_steps == 1
    assert to_request_payload({"task": "t", "max_steps": 40}, max_steps_limit=12).max_steps == 12
    assert to_request_payload({"task": "t", "max_steps": 4.7}, max_steps_limit=12).max_steps == 4
    assert to_request_payload({"task": "t", "max_steps": True}, max_steps_limit=12).max_steps is None


def test_deadline_and_timezone_are_normalized() -> None:
    request = to_request_payload(
        {"task": "t", "deadline": "2026-05-01T12:00:00+09:00", "timezone": "Asia/Tokyo"}
    )

    assert request.deadline == datetime(2026, 5, 1, 3, 0, tzinfo=timezone.utc)
    assert request.timezone == "Asia/Tokyo"


def test_parse_instant_treats_naive_and_z_as_utc() -> None:
    assert parse_instant("2026-02-20T09:00:00.000Z") == datetime(2026, 2, 20, 9, 0, tzinfo=timezone.utc)
    assert parse_instant("2026-02-20T09:00:00") == datetime(2026, 2, 20, 9, 0, tzinfo=timezone.utc)
    assert parse_instant("") is None
    assert parse_instant(12) is None


def test_require_user() -> None:
    with pytest.raises(InputValidationError):
        require_user(to_request_payload({"task": "t"}))
    assert require_user(to_request_payload({"task": "t", "user_id": "u"})) == "u"


def test_out_of_range_values_do_not_crash() -> None:
    assert parse_instant("0001-01-01T00:00:00+09:00") is None
    assert parse_instant("9999-12-31T23:59:59-05:00") is None
    assert to_request_payload({"task": "t", "deadline": "0001-01-01T00:00:00+09:00"}).deadline is None
    assert to_request_payload({"task": "t", "max_steps": 10**400}, max_steps_limit=12).max_steps == 12
    assert to_request_payload({"task": "t", "max_steps": -(10**400)}, max_steps_limit=12).max_steps == 1
    assert to_request_payload({"task": "t", "max_steps": float("inf")}, max_steps_limit=12).max_steps is None

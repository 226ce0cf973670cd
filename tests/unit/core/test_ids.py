import uuid

import pytest

from servicevault_api.common import ids


def test_generate_uuid7_returns_unique_uuids() -> None:
    first = ids.generate_uuid7()
    second = ids.generate_uuid7()

    assert isinstance(first, uuid.UUID)
    assert first != second


@pytest.mark.parametrize("value", [None, "", "   ", "not-a-uuid", "1234"])
def test_parse_uuid_rejects_blank_and_malformed(value: str | None) -> None:
    assert ids.parse_uuid(value) is None


def test_parse_uuid_accepts_strings_and_uuids() -> None:
    value = uuid.uuid4()

    assert ids.parse_uuid(value) is value
    assert ids.parse_uuid(f"  {value}  ") == value

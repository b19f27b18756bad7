from grantdesk.billing.timestamps import parse_timestamp, timestamp_to_iso

T0 = 1_735_689_600  # 2025-01-01T00:00:00Z


def test_parse_timestamp_accepts_common_shapes() -> None:
    expected = parse_timestamp(T0)

    assert expected.isoformat() == "2025-01-01T00:00:00+00:00"
    assert parse_timestamp("2025-01-01T00:00:00Z") == expected
    assert parse_timestamp("2025-01-01T00:00:00") == expected
    assert parse_timestamp(str(T0)) == expected
    assert parse_timestamp(None) is None
    assert parse_timestamp("not a date") is None


def test_timestamp_to_iso() -> None:
    assert timestamp_to_iso(T0) == "2025-01-01T00:00:00+00:00"
    assert timestamp_to_iso(0) is None

import pytest
from google.protobuf.timestamp_pb2 import Timestamp

from sloop.timestamps import TimestampError, string_to_timestamp


def test_string_to_timestamp_success():
    assert string_to_timestamp("2019-07-12T20:12:12Z") == Timestamp(seconds=1562962332, nanos=0)


def test_string_to_timestamp_failure_cannot_parse():
    with pytest.raises(TimestampError, match="could not parse timestamp"):
        string_to_timestamp("2019-070:12:12Z")


def test_string_to_timestamp_failure_cannot_transform_to_pb():
    with pytest.raises(TimestampError, match="could not transform to proto timestamp"):
        string_to_timestamp("0000-07-12T20:12:12Z")


def test_offset_and_fraction_give_same_instant():
    reference = string_to_timestamp("2019-07-12T20:12:12Z")
    shifted = string_to_timestamp("2019-07-12T22:12:12.5+02:00")
    assert shifted.seconds == reference.seconds
    assert shifted.nanos == 500000000


def test_epoch_is_zero():
    assert string_to_timestamp("1970-01-01T00:00:00Z") == Timestamp(seconds=0, nanos=0)


@pytest.mark.parametrize("text", ["2019-02-30T00:00:00Z", "2019-13-01T00:00:00Z", "2019-07-12 20:12:12Z"])
def test_invalid_dates_cannot_parse(text):
    with pytest.raises(TimestampError, match="could not parse timestamp"):
        string_to_timestamp(text)
from datetime import datetime, timezone

from studyforest.utils.calendar import FulfillmentBucket, current_bucket, local_now


def test_bucket_uses_zero_based_iso_week_and_sunday_zero():
    # Tuesday of ISO week 10
    bucket = current_bucket(datetime(2024, 3, 5, 12, 0))
    assert bucket == FulfillmentBucket(year=2024, week=9, day=2)


def test_bucket_converts_to_app_timezone():
    # Saturday evening in UTC is already Sunday morning in Seoul
    bucket = current_bucket(datetime(2024, 3, 9, 20, 0, tzinfo=timezone.utc))
    assert bucket.day == 0
    assert bucket.week == 9


def test_bucket_keeps_calendar_year_at_iso_year_boundary():
    # 2021-01-01 belongs to ISO week 53 of 2020
    bucket = current_bucket(datetime(2021, 1, 1, 9, 0))
    assert bucket == FulfillmentBucket(year=2021, week=52, day=5)


def test_bucket_week_never_exceeds_53():
    for year in range(2015, 2035):
        assert current_bucket(datetime(year, 12, 31, 23, 0)).week <= 53


def test_local_now_is_aware_and_in_app_zone():
    now = local_now()
    assert now.tzinfo is not None
    assert now.utcoffset().total_seconds() == 9 * 3600
    assert current_bucket().year == now.year

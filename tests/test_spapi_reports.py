import gzip
from datetime import datetime, timedelta, timezone

import pytest
import requests

import services.spapi_reports as spr
from conftest import FIXED_NOW, FakeResponse
from services.sync_errors import (
    ApiResponseError,
    CreateReportError,
    InvalidReportStatus,
    JobFailure,
    JobTimeout,
    SpApiQuotaError,
)


def _parse(value):
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


def _report(status, document_id=None, **extra):
    body = {"reportId": "RID", "processingStatus": status, **extra}
    if document_id:
        body["reportDocumentId"] = document_id
    return FakeResponse(200, body)


# ---------------------------------------------------------------------------
# Week window
# ---------------------------------------------------------------------------


def test_week_window_is_sunday_to_saturday_with_lag():
    start, end = spr.compute_week_window(FIXED_NOW)

    assert end == datetime(2026, 1, 24, 23, 59, 59, tzinfo=timezone.utc)
    assert start == datetime(2025, 12, 21, 0, 0, 0, tzinfo=timezone.utc)
    assert end.weekday() == 5
    assert start.weekday() == 6
    assert end <= FIXED_NOW - timedelta(days=3)
    assert start <= end - timedelta(days=30)


def test_week_window_includes_saturday_closing_exactly_at_lag_point():
    now = datetime(2026, 1, 27, 23, 59, 59, tzinfo=timezone.utc)
    _, end = spr.compute_week_window(now)
    assert end == datetime(2026, 1, 24, 23, 59, 59, tzinfo=timezone.utc)


def test_week_window_skips_saturday_inside_lag():
    now = datetime(2026, 1, 27, 23, 59, 58, tzinfo=timezone.utc)
    _, end = spr.compute_week_window(now)
    assert end == datetime(2026, 1, 17, 23, 59, 59, tzinfo=timezone.utc)


@pytest.mark.parametrize("day_offset", range(7))
def test_week_window_boundaries_for_every_weekday(day_offset):
    now = FIXED_NOW + timedelta(days=day_offset)
    start, end = spr.compute_week_window(now)
    assert end.weekday() == 5 and (end.hour, end.minute, end.second) == (23, 59, 59)
    assert start.weekday() == 6 and (start.hour, start.minute, start.second) == (0, 0, 0)
    assert now - timedelta(days=10) < end <= now - timedelta(days=3)


# ---------------------------------------------------------------------------
# createReport body
# ---------------------------------------------------------------------------


def test_weekly_spec_ignores_requested_range(sync_ctx):
    client = spr.ReportJobClient(sync_ctx)
    body = client.build_report_body(
        "GET_VENDOR_SALES_REPORT",
        FIXED_NOW - timedelta(days=2),
        FIXED_NOW,
    )

    assert body["dataStartTime"] == "2025-12-21T00:00:00Z"
    assert body["dataEndTime"] == "2026-01-24T23:59:59Z"
    assert body["marketplaceIds"] == ["A2EUQ1WTGCTBG2"]
    assert body["reportOptions"] == {
        "reportPeriod": "WEEK",
        "distributorView": "MANUFACTURING",
        "sellingProgram": "RETAIL",
    }


@pytest.mark.parametrize(
    "report_type",
    ["GET_VENDOR_NET_PURE_PRODUCT_MARGIN_REPORT", "GET_VENDOR_TRAFFIC_REPORT"],
)
def test_weekly_options_filtered_to_accepted_keys(sync_ctx, report_type):
    body = spr.ReportJobClient(sync_ctx).build_report_body(report_type, FIXED_NOW, FIXED_NOW)
    assert body["reportOptions"] == {"reportPeriod": "WEEK"}


def test_real_time_span_is_capped(sync_ctx):
    body = spr.ReportJobClient(sync_ctx).build_report_body(
        "GET_VENDOR_REAL_TIME_SALES_REPORT",
        FIXED_NOW - timedelta(days=30),
        FIXED_NOW,
    )
    assert "reportOptions" not in body
    assert _parse(body["dataEndTime"]) == FIXED_NOW
    assert _parse(body["dataEndTime"]) - _parse(body["dataStartTime"]) == timedelta(days=14)


def test_real_time_span_within_cap_is_kept(sync_ctx):
    body = spr.ReportJobClient(sync_ctx).build_report_body(
        "GET_VENDOR_REAL_TIME_INVENTORY_REPORT",
        FIXED_NOW - timedelta(days=2),
        FIXED_NOW,
    )
    assert _parse(body["dataStartTime"]) == FIXED_NOW - timedelta(days=2)


def test_unknown_report_type_rejected(sync_ctx):
    with pytest.raises(ValueError):
        spr.ReportJobClient(sync_ctx).build_report_body("GET_SOMETHING_ELSE", FIXED_NOW, FIXED_NOW)


def test_weekly_exact_window_is_kept(sync_ctx):
    body = spr.ReportJobClient(sync_ctx).build_report_body(
        "GET_VENDOR_SALES_REPORT",
        datetime(2024, 3, 3, tzinfo=timezone.utc),
        datetime(2024, 3, 9, 23, 59, 59, tzinfo=timezone.utc),
        exact_window=True,
    )

    assert body["dataStartTime"] == "2024-03-03T00:00:00Z"
    assert body["dataEndTime"] == "2024-03-09T23:59:59Z"
    assert body["reportOptions"]["reportPeriod"] == "WEEK"


def test_weekly_exact_window_must_be_sunday_to_saturday(sync_ctx):
    with pytest.raises(ValueError, match="Sunday to Saturday"):
        spr.ReportJobClient(sync_ctx).build_report_body(
            "GET_VENDOR_TRAFFIC_REPORT",
            datetime(2024, 3, 4, tzinfo=timezone.utc),
            datetime(2024, 3, 9, 23, 59, 59, tzinfo=timezone.utc),
            exact_window=True,
        )


# ---------------------------------------------------------------------------
# createReport
# ---------------------------------------------------------------------------


def test_create_report_returns_report_id(sync_ctx, session):
    session.add("POST", "/reports/2021-06-30/reports", FakeResponse(202, {"reportId": "RID"}))

    report_id = spr.ReportJobClient(sync_ctx).create_report(
        "token", "GET_VENDOR_TRAFFIC_REPORT", FIXED_NOW, FIXED_NOW
    )

    assert report_id == "RID"
    call = session.calls[0]
    assert call["url"] == "https://sp.example/reports/2021-06-30/reports"
    assert call["headers"]["x-amz-access-token"] == "token"
    assert call["json"]["reportType"] == "GET_VENDOR_TRAFFIC_REPORT"


def test_create_report_non_json_response(sync_ctx, session):
    session.add(
        "POST",
        "/reports",
        FakeResponse(502, text="<html>Bad Gateway</html>", headers={"content-type": "text/html"}),
    )
    with pytest.raises(CreateReportError, match="Non-JSON"):
        spr.ReportJobClient(sync_ctx).create_report("token", "GET_VENDOR_TRAFFIC_REPORT", FIXED_NOW, FIXED_NOW)


def test_create_report_error_status(sync_ctx, session):
    session.add("POST", "/reports", FakeResponse(400, {"errors": [{"code": "InvalidInput"}]}))
    with pytest.raises(CreateReportError) as excinfo:
        spr.ReportJobClient(sync_ctx).create_report("token", "GET_VENDOR_TRAFFIC_REPORT", FIXED_NOW, FIXED_NOW)
    assert excinfo.value.status_code == 400


# ---------------------------------------------------------------------------
# Polling
# ---------------------------------------------------------------------------


def test_wait_for_report_polls_until_done(sync_ctx, session, clock):
    session.add(
        "GET",
        "/reports/RID",
        _report("IN_QUEUE"),
        _report("IN_PROGRESS"),
        _report("DONE", "DOC-1"),
    )
    job = spr.ReportJob("GET_VENDOR_TRAFFIC_REPORT", "RID")

    document_id = spr.ReportJobClient(sync_ctx).wait_for_report("token", "RID", job=job)

    assert document_id == "DOC-1"
    assert job.status == spr.ReportStatus.DONE
    assert job.report_document_id == "DOC-1"
    assert clock.sleeps == [3, 3]


def test_fatal_with_error_document(sync_ctx, session):
    session.add("GET", "/reports/RID", _report("FATAL", "ERR-DOC"))
    session.add("GET", "/documents/ERR-DOC", FakeResponse(200, {"url": "https://download.example/err"}))
    session.add("GET", "download.example/err", FakeResponse(200, text="x" * 5000))

    with pytest.raises(JobFailure) as excinfo:
        spr.ReportJobClient(sync_ctx).wait_for_report("token", "RID")

    assert excinfo.value.status == "FATAL"
    assert excinfo.value.error_text == "x" * 2000


def test_fatal_with_unreachable_error_document_still_raises_job_failure(sync_ctx, session):
    session.add("GET", "/reports/RID", _report("FATAL", "ERR-DOC"))
    session.add("GET", "/documents/ERR-DOC", requests.exceptions.ConnectionError("unreachable"))

    with pytest.raises(JobFailure) as excinfo:
        spr.ReportJobClient(sync_ctx).wait_for_report("token", "RID")

    assert excinfo.value.status == "FATAL"
    assert excinfo.value.error_text is None


def test_cancelled_without_document(sync_ctx, session):
    session.add("GET", "/reports/RID", _report("CANCELLED"))
    with pytest.raises(JobFailure) as excinfo:
        spr.ReportJobClient(sync_ctx).wait_for_report("token", "RID")
    assert excinfo.value.status == "CANCELLED"


def test_wait_times_out(sync_ctx, session, clock):
    session.add("GET", "/reports/RID", _report("IN_PROGRESS"))

    with pytest.raises(JobTimeout) as excinfo:
        spr.ReportJobClient(sync_ctx).wait_for_report("token", "RID", max_wait_ms=10_000)

    assert excinfo.value.last_status == "IN_PROGRESS"
    assert len(session.calls) == 4
    assert clock.elapsed >= 10


def test_unknown_status_is_rejected(sync_ctx, session):
    session.add("GET", "/reports/RID", _report("EXPLODED"))
    with pytest.raises(InvalidReportStatus):
        spr.ReportJobClient(sync_ctx).wait_for_report("token", "RID")


def test_done_without_document_id_is_rejected(sync_ctx, session):
    session.add("GET", "/reports/RID", _report("DONE"))
    with pytest.raises(InvalidReportStatus):
        spr.ReportJobClient(sync_ctx).wait_for_report("token", "RID")


def test_quota_error_on_get_report(sync_ctx, session):
    session.add("GET", "/reports/RID", FakeResponse(429, {"errors": [{"code": "QuotaExceeded"}]}))
    with pytest.raises(SpApiQuotaError) as excinfo:
        spr.ReportJobClient(sync_ctx).wait_for_report("token", "RID")
    assert excinfo.value.status_code == 429


def test_job_rejects_illegal_transition():
    job = spr.ReportJob("GET_VENDOR_TRAFFIC_REPORT", "RID")
    job.advance(spr.ReportStatus.DONE)
    with pytest.raises(InvalidReportStatus):
        job.advance(spr.ReportStatus.IN_PROGRESS)
    job.advance(spr.ReportStatus.DOWNLOADED)
    assert job.is_terminal


# ---------------------------------------------------------------------------
# Download
# ---------------------------------------------------------------------------


def test_download_gzip_document_without_auth_header(sync_ctx, session):
    session.add(
        "GET",
        "/documents/DOC-1",
        FakeResponse(200, {"url": "https://download.example/doc", "compressionAlgorithm": "GZIP"}),
    )
    payload = gzip.compress(b"\xef\xbb\xbf" + b'{"salesByAsin": []}')
    session.add(
        "GET",
        "download.example/doc",
        FakeResponse(200, content=payload, headers={"content-type": "application/octet-stream"}),
    )

    text = spr.ReportJobClient(sync_ctx).download_and_decode("token", "DOC-1")

    assert text == '{"salesByAsin": []}'
    download_call = session.calls[-1]
    assert download_call["url"] == "https://download.example/doc"
    assert "headers" not in download_call


def test_download_missing_url(sync_ctx, session):
    session.add("GET", "/documents/DOC-1", FakeResponse(200, {"reportDocumentId": "DOC-1"}))
    with pytest.raises(ApiResponseError):
        spr.ReportJobClient(sync_ctx).download_and_decode("token", "DOC-1")


def test_run_report_end_to_end(sync_ctx, session):
    session.add("POST", "/reports", FakeResponse(202, {"reportId": "RID"}))
    session.add("GET", "/reports/RID", _report("DONE", "DOC-1"))
    session.add("GET", "/documents/DOC-1", FakeResponse(200, {"url": "https://download.example/doc"}))
    session.add("GET", "download.example/doc", FakeResponse(200, text='{"trafficByAsin": [{"asin": "B0"}]}'))

    content = spr.ReportJobClient(sync_ctx).run_report(
        "token", "GET_VENDOR_TRAFFIC_REPORT", FIXED_NOW - timedelta(days=30), FIXED_NOW
    )

    assert content == '{"trafficByAsin": [{"asin": "B0"}]}'
    assert [c["method"] for c in session.calls] == ["POST", "GET", "GET", "GET"]


# ---------------------------------------------------------------------------
# Retry at the call sites
# ---------------------------------------------------------------------------


def test_create_report_server_error_is_sent_once(sync_ctx, session, clock):
    session.add("POST", "/reports", FakeResponse(500, {"errors": [{"code": "InternalFailure"}]}))

    with pytest.raises(CreateReportError) as excinfo:
        spr.ReportJobClient(sync_ctx).create_report("token", "GET_VENDOR_TRAFFIC_REPORT", FIXED_NOW, FIXED_NOW)

    assert excinfo.value.status_code == 500
    assert len(session.calls) == 1
    assert clock.sleeps == []


def test_get_report_client_error_is_sent_once(sync_ctx, session):
    session.add("GET", "/reports/RID", FakeResponse(400, {"errors": [{"code": "InvalidInput"}]}))

    with pytest.raises(ApiResponseError) as excinfo:
        spr.ReportJobClient(sync_ctx).get_report("token", "RID")

    assert excinfo.value.status_code == 400
    assert len(session.calls) == 1


def test_get_report_retries_dropped_connection(sync_ctx, session, clock):
    session.add(
        "GET",
        "/reports/RID",
        requests.exceptions.ConnectionError("reset by peer"),
        _report("DONE", "DOC-1"),
    )

    data = spr.ReportJobClient(sync_ctx).get_report("token", "RID")

    assert data["processingStatus"] == "DONE"
    assert len(session.calls) == 2
    assert clock.sleeps == [2.0]


def test_download_retries_body_broken_mid_read(sync_ctx, session, clock):
    session.add(
        "GET",
        "/documents/DOC-1",
        FakeResponse(200, {"url": "https://download.example/doc", "compressionAlgorithm": "GZIP"}),
    )
    session.add(
        "GET",
        "download.example/doc",
        requests.exceptions.ChunkedEncodingError("IncompleteRead(512 bytes read, 4096 more expected)"),
        FakeResponse(200, content=gzip.compress(b'{"salesByAsin": []}')),
    )

    text = spr.ReportJobClient(sync_ctx).download_and_decode("token", "DOC-1")

    assert text == '{"salesByAsin": []}'
    assert len(session.calls) == 3
    assert clock.sleeps == [2.0]


def test_run_report_with_exact_window_posts_that_week(sync_ctx, session):
    session.add("POST", "/reports", FakeResponse(202, {"reportId": "RID"}))
    session.add("GET", "/reports/RID", _report("DONE", "DOC-1"))
    session.add("GET", "/documents/DOC-1", FakeResponse(200, {"url": "https://download.example/doc"}))
    session.add("GET", "download.example/doc", FakeResponse(200, text='{"salesByAsin": []}'))

    spr.ReportJobClient(sync_ctx).run_report(
        "token",
        "GET_VENDOR_SALES_REPORT",
        datetime(2024, 3, 3, tzinfo=timezone.utc),
        datetime(2024, 3, 9, 23, 59, 59, tzinfo=timezone.utc),
        exact_window=True,
    )

    posted = session.calls[0]["json"]
    assert (posted["dataStartTime"], posted["dataEndTime"]) == ("2024-03-03T00:00:00Z", "2024-03-09T23:59:59Z")

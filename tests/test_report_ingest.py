import json

import pytest

from services.report_ingest import ReportIngester, data_key_for, extract_asin_rows

SALES = "GET_VENDOR_SALES_REPORT"


def _sales_rows(count, missing_asin=(), end_date="2026-01-24"):
    rows = []
    for idx in range(count):
        row = {
            "startDate": "2026-01-18",
            "endDate": end_date,
            "orderedUnits": idx,
        }
        if idx not in missing_asin:
            row["asin"] = f"B00000000{idx}"
        rows.append(row)
    return rows


def _stored(ctx, report_type=SALES):
    return [
        dict(r)
        for r in ctx.db.execute(
            "SELECT * FROM vendor_reports WHERE report_type = ? ORDER BY asin", (report_type,)
        ).fetchall()
    ]


def test_rows_without_asin_are_skipped(sync_ctx):
    content = json.dumps({"salesByAsin": _sales_rows(10, missing_asin={1, 4, 7})})

    saved = ReportIngester(sync_ctx).ingest(SALES, content)

    assert saved == 7
    rows = _stored(sync_ctx)
    assert len(rows) == 7
    assert all(r["report_date"] == "2026-01-24" for r in rows)
    assert rows[0]["data_start_date"] == "2026-01-18"
    assert json.loads(rows[0]["data"])["orderedUnits"] == 0


def test_reingesting_same_report_replaces_rows(sync_ctx):
    content = json.dumps({"salesByAsin": _sales_rows(5)})
    ingester = ReportIngester(sync_ctx)

    ingester.ingest(SALES, content)
    ingester.ingest(SALES, content)

    assert len(_stored(sync_ctx)) == 5


def test_other_report_dates_are_kept(sync_ctx):
    ingester = ReportIngester(sync_ctx)
    ingester.ingest(SALES, json.dumps({"salesByAsin": _sales_rows(3, end_date="2026-01-17")}))
    ingester.ingest(SALES, json.dumps({"salesByAsin": _sales_rows(4, end_date="2026-01-24")}))

    dates = [r["report_date"] for r in _stored(sync_ctx)]
    assert dates.count("2026-01-17") == 3
    assert dates.count("2026-01-24") == 4


def test_other_report_types_are_untouched(sync_ctx):
    ingester = ReportIngester(sync_ctx)
    ingester.ingest("GET_VENDOR_TRAFFIC_REPORT", json.dumps({"trafficByAsin": _sales_rows(2)}))
    ingester.ingest(SALES, json.dumps({"salesByAsin": _sales_rows(3)}))

    assert len(_stored(sync_ctx, "GET_VENDOR_TRAFFIC_REPORT")) == 2


def test_unparseable_content_saves_nothing(sync_ctx):
    assert ReportIngester(sync_ctx).ingest(SALES, "{not json") == 0
    assert _stored(sync_ctx) == []


def test_missing_rows_save_nothing(sync_ctx):
    assert ReportIngester(sync_ctx).ingest(SALES, json.dumps({"reportSpecification": {}})) == 0


def test_report_data_fallback_and_today_date(sync_ctx):
    report_type = "GET_VENDOR_REAL_TIME_INVENTORY_REPORT"
    content = json.dumps(
        {"reportData": [{"asin": "B0RT000001", "highlyAvailableInventory": 12}]}
    )

    assert ReportIngester(sync_ctx).ingest(report_type, content) == 1

    row = _stored(sync_ctx, report_type)[0]
    assert row["report_date"] == "2026-01-28"
    assert row["data_start_date"] is None


def test_inserts_in_chunks(sync_ctx):
    content = json.dumps({"salesByAsin": _sales_rows(7, missing_asin={2})})
    assert ReportIngester(sync_ctx, chunk_size=3).ingest(SALES, content) == 6
    assert len(_stored(sync_ctx)) == 6


@pytest.mark.parametrize(
    "report_type, key",
    [
        ("GET_VENDOR_REAL_TIME_INVENTORY_REPORT", "inventoryByAsin"),
        ("GET_VENDOR_REAL_TIME_SALES_REPORT", "salesByAsin"),
        ("GET_VENDOR_TRAFFIC_REPORT", "trafficByAsin"),
        ("GET_VENDOR_NET_PURE_PRODUCT_MARGIN_REPORT", "netPureProductMarginByAsin"),
        ("GET_SOMETHING_ELSE", None),
    ],
)
def test_data_key_for(report_type, key):
    assert data_key_for(report_type) == key


def test_extract_asin_rows_ignores_non_list_payloads():
    assert extract_asin_rows(SALES, {"salesByAsin": {"asin": "B0"}}) == []
    assert extract_asin_rows(SALES, ["not", "a", "dict"]) == []


def test_non_string_dates_fall_back_to_today(sync_ctx):
    content = json.dumps(
        {
            "inventoryByAsin": [
                {"asin": "B1", "endDate": {"value": "2026-01-24"}, "startDate": ["2026-01-18"]},
                {"asin": "B2", "date": 20260124},
            ]
        }
    )

    saved = ReportIngester(sync_ctx).ingest("GET_VENDOR_REAL_TIME_INVENTORY_REPORT", content)

    assert saved == 2
    rows = _stored(sync_ctx, "GET_VENDOR_REAL_TIME_INVENTORY_REPORT")
    assert [r["report_date"] for r in rows] == ["2026-01-28", "2026-01-28"]
    assert rows[0]["data_start_date"] is None
    assert rows[0]["data_end_date"] is None


def test_non_string_asin_is_skipped(sync_ctx):
    content = json.dumps({"salesByAsin": [{"asin": ["B1"], "endDate": "2026-01-24"}, {"asin": "B2"}]})

    assert ReportIngester(sync_ctx).ingest(SALES, content) == 1


def test_default_date_replaces_today(sync_ctx):
    content = json.dumps({"salesByAsin": [{"asin": "B1"}]})

    ReportIngester(sync_ctx).ingest(SALES, content, default_date="2024-03-09")

    assert _stored(sync_ctx)[0]["report_date"] == "2024-03-09"

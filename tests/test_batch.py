import threading

import pytest
from openpyxl import Workbook

from excel_extractor import batch
from excel_extractor.batch import BatchProcessor, ItemStatus
from excel_extractor.config import Settings
from excel_extractor.errors import RunInProgress, SchemaError, WorkbookLoadError
from excel_extractor.extraction import extract_record
from excel_extractor.grid import CellGrid
from excel_extractor.models import Mapping, Schema
from excel_extractor.sinks import CallableSink, InMemorySink


@pytest.fixture
def schema():
    return Schema.load(
        {
            "id": "sales",
            "name": "Sales",
            "fields": [
                {"id": "f1", "name": "revenue", "type": "currency"},
                {
                    "id": "f2",
                    "name": "status",
                    "type": "enum",
                    "enumOptions": ["Active", "Inactive"],
                },
            ],
        }
    )


@pytest.fixture
def mapping():
    return Mapping.load(
        {
            "id": "m1",
            "schemaId": "sales",
            "fieldMappings": [
                {"schemaFieldId": "f1", "formula": "=SUM(Sheet1!B2:B4)"},
                {"schemaFieldId": "f2", "formula": "=Sheet1!C2"},
            ],
        }
    )


@pytest.fixture
def settings():
    return Settings(_env_file=None)


@pytest.fixture
def sink():
    return InMemorySink()


@pytest.fixture
def processor(sink, settings):
    return BatchProcessor(sink, settings=settings)


def make_grid(name, status="Active", sheet="Sheet1"):
    return CellGrid(
        {
            sheet: [
                ["Region", "Revenue", "Status"],
                ["North", 5, status],
                ["South", None],
                ["East", 3],
            ]
        },
        identifier=name,
    )


class TestScenarios:
    def test_all_fields_valid(self, processor, sink, mapping, schema):
        processor.add([make_grid("a.xlsx")])
        stats = processor.run(mapping, schema)

        (item,) = processor.items
        assert item.status == ItemStatus.COMPLETED
        assert item.extracted_fields == 2
        assert item.error is None
        assert sink.records[0].data == {"revenue": 8, "status": "Active"}
        assert sink.records[0].source_workbook == "a.xlsx"
        assert (stats.completed, stats.failed, stats.total_records_created) == (1, 0, 1)

    def test_invalid_enum_drops_field(self, processor, sink, mapping, schema):
        processor.add([make_grid("a.xlsx", status="Closed")])
        processor.run(mapping, schema)

        (item,) = processor.items
        assert item.status == ItemStatus.COMPLETED
        assert item.extracted_fields == 1
        assert "status" in item.field_errors
        assert sink.records[0].data == {"revenue": 8}

    def test_missing_sheet_fails_item(self, processor, sink, mapping, schema):
        processor.add([make_grid("a.xlsx", sheet="Data")])
        stats = processor.run(mapping, schema)

        (item,) = processor.items
        assert item.status == ItemStatus.ERROR
        assert item.error == "No valid fields could be computed"
        assert item.extracted_fields is None
        assert set(item.field_errors) == {"revenue", "status"}
        assert sink.records == []
        assert (stats.completed, stats.failed, stats.total_records_created) == (0, 1, 0)


class TestStats:
    def test_failures_are_counted(self, processor, mapping, schema):
        grids = [make_grid(f"ok{i}.xlsx") for i in range(5)]
        grids[1] = make_grid("bad1.xlsx", sheet="Other")
        grids[3] = make_grid("bad3.xlsx", sheet="Other")
        processor.add(grids)
        stats = processor.run(mapping, schema)

        assert stats.total == 5
        assert stats.completed == 3
        assert stats.failed == 2
        assert stats.total_records_created == 3
        statuses = [item.status for item in processor.items]
        assert statuses == [
            ItemStatus.COMPLETED,
            ItemStatus.ERROR,
            ItemStatus.COMPLETED,
            ItemStatus.ERROR,
            ItemStatus.COMPLETED,
        ]

    def test_total_counts_on_add(self, processor, mapping, schema):
        processor.add([make_grid("a.xlsx"), make_grid("b.xlsx")])
        assert processor.stats.total == 2
        assert processor.stats.completed == 0

    def test_stats_accumulate_across_runs(self, processor, mapping, schema):
        processor.add([make_grid("a.xlsx")])
        processor.run(mapping, schema)
        processor.add([make_grid("b.xlsx"), make_grid("c.xlsx", sheet="Other")])
        stats = processor.run(mapping, schema)

        assert stats.total == 3
        assert stats.completed == 2
        assert stats.failed == 1
        assert stats.total_records_created == 2

    def test_terminal_items_are_not_reprocessed(self, processor, sink, mapping, schema):
        processor.add([make_grid("a.xlsx")])
        processor.run(mapping, schema)
        stats = processor.run(mapping, schema)
        assert stats.completed == 1
        assert len(sink.records) == 1

    def test_clear(self, processor, mapping, schema):
        processor.add([make_grid("a.xlsx")])
        processor.run(mapping, schema)
        processor.clear()
        assert processor.items == []
        stats = processor.stats
        assert (stats.total, stats.completed, stats.failed) == (0, 0, 0)

    def test_stats_snapshot_is_a_copy(self, processor):
        snapshot = processor.stats
        snapshot.total = 99
        assert processor.stats.total == 0

    def test_stats_updated_after_each_item(self, settings, mapping, schema):
        seen = []

        def save(record):
            # Stats visible while the next record is being saved
            seen.append(processor.stats.completed)

        processor = BatchProcessor(CallableSink(save), settings=settings)
        processor.add([make_grid("a.xlsx"), make_grid("b.xlsx"), make_grid("c.xlsx")])
        processor.run(mapping, schema)
        assert seen == [0, 1, 2]


class TestFailures:
    def test_sink_failure(self, settings, mapping, schema):
        def save(record):
            if record.source_workbook == "b.xlsx":
                raise RuntimeError("duplicate key value violates unique constraint")

        processor = BatchProcessor(CallableSink(save), settings=settings)
        processor.add([make_grid("a.xlsx"), make_grid("b.xlsx"), make_grid("c.xlsx")])
        stats = processor.run(mapping, schema)

        items = processor.items
        assert [item.status for item in items] == [
            ItemStatus.COMPLETED,
            ItemStatus.ERROR,
            ItemStatus.COMPLETED,
        ]
        assert "duplicate key value" in items[1].error
        assert (stats.completed, stats.failed, stats.total_records_created) == (2, 1, 2)

    def test_parse_failure(self, sink, settings, mapping, schema):
        def parse(source):
            if source == "broken.xlsx":
                raise WorkbookLoadError("Failed to parse workbook broken.xlsx")
            return make_grid(source)

        processor = BatchProcessor(sink, parse_workbook=parse, settings=settings)
        processor.add(["good.xlsx", "broken.xlsx"])
        stats = processor.run(mapping, schema)

        good, broken = processor.items
        assert good.name == "good.xlsx"
        assert good.status == ItemStatus.COMPLETED
        assert broken.status == ItemStatus.ERROR
        assert broken.error == "Failed to parse workbook broken.xlsx"
        assert (stats.completed, stats.failed) == (1, 1)

    def test_unexpected_parse_exception(self, sink, settings, mapping, schema):
        def parse(source):
            raise KeyError("xl/workbook.xml")

        processor = BatchProcessor(sink, parse_workbook=parse, settings=settings)
        processor.add(["a.xlsx"])
        processor.run(mapping, schema)
        (item,) = processor.items
        assert item.status == ItemStatus.ERROR
        assert "Failed to parse workbook a.xlsx" in item.error

    def test_unexpected_extraction_exception(
        self, monkeypatch, sink, settings, mapping, schema
    ):
        def extract(grid, *args):
            if grid.identifier == "a.xlsx":
                raise RuntimeError("cell cache corrupted")
            return extract_record(grid, *args)

        monkeypatch.setattr(batch, "extract_record", extract)
        processor = BatchProcessor(sink, settings=settings)
        processor.add([make_grid("a.xlsx"), make_grid("b.xlsx")])
        stats = processor.run(mapping, schema)

        first, second = processor.items
        assert first.status == ItemStatus.ERROR
        assert "cell cache corrupted" in first.error
        assert second.status == ItemStatus.COMPLETED
        assert not processor.is_running
        assert (stats.completed, stats.failed) == (1, 1)
        assert [r.source_workbook for r in sink.records] == ["b.xlsx"]

    def test_serial_date_out_of_range(self, sink, settings):
        schema = Schema.load(
            {
                "id": "events",
                "name": "Events",
                "fields": [{"id": "d", "name": "held_on", "type": "date"}],
            }
        )
        mapping = Mapping.load(
            {
                "id": "m2",
                "schemaId": "events",
                "fieldMappings": [{"schemaFieldId": "d", "formula": "=Sheet1!A1"}],
            }
        )
        processor = BatchProcessor(sink, settings=settings)
        processor.add(
            [
                CellGrid({"Sheet1": [[99999999]]}, identifier="far.xlsx"),
                CellGrid({"Sheet1": [[45292]]}, identifier="near.xlsx"),
            ]
        )
        stats = processor.run(mapping, schema)

        far, near = processor.items
        assert far.status == ItemStatus.ERROR
        assert far.error == "No valid fields could be computed"
        assert "out of range" in far.field_errors["held_on"]
        assert near.status == ItemStatus.COMPLETED
        assert (stats.completed, stats.failed) == (1, 1)

    def test_schema_mismatch(self, processor, mapping, schema):
        other = schema.model_copy(update={"id": "other"})
        with pytest.raises(SchemaError):
            processor.run(mapping, other)


class TestPolicies:
    def test_empty_record_allowed(self, sink, mapping, schema):
        settings = Settings(_env_file=None, fail_on_empty_record=False)
        processor = BatchProcessor(sink, settings=settings)
        processor.add([make_grid("a.xlsx", sheet="Data")])
        stats = processor.run(mapping, schema)

        (item,) = processor.items
        assert item.status == ItemStatus.COMPLETED
        assert item.extracted_fields == 0
        assert sink.records == []
        assert (stats.completed, stats.total_records_created) == (1, 0)

    def test_required_field_fails_item(self, sink, mapping):
        schema = Schema.load(
            {
                "id": "sales",
                "name": "Sales",
                "fields": [
                    {"id": "f1", "name": "revenue", "type": "currency"},
                    {
                        "id": "f2",
                        "name": "status",
                        "type": "enum",
                        "required": True,
                        "enumOptions": ["Active", "Inactive"],
                    },
                ],
            }
        )
        strict = Settings(_env_file=None, fail_on_required_field=True)
        processor = BatchProcessor(sink, settings=strict)
        processor.add([make_grid("a.xlsx", status="Closed")])
        processor.run(mapping, schema)
        (item,) = processor.items
        assert item.status == ItemStatus.ERROR
        assert "status" in item.error

        # Default policy: the record is still produced without the field
        lenient = BatchProcessor(sink, settings=Settings(_env_file=None))
        lenient.add([make_grid("a.xlsx", status="Closed")])
        lenient.run(mapping, schema)
        assert lenient.items[0].status == ItemStatus.COMPLETED


class TestRunControl:
    def test_cancel_between_items(self, settings, mapping, schema):
        def save(record):
            if record.source_workbook == "a.xlsx":
                processor.cancel()

        processor = BatchProcessor(CallableSink(save), settings=settings)
        processor.add([make_grid("a.xlsx"), make_grid("b.xlsx"), make_grid("c.xlsx")])
        stats = processor.run(mapping, schema)

        assert [item.status for item in processor.items] == [
            ItemStatus.COMPLETED,
            ItemStatus.QUEUED,
            ItemStatus.QUEUED,
        ]
        assert stats.completed == 1

        # A new run picks up the remaining items
        stats = processor.run(mapping, schema)
        assert stats.completed == 3

    def test_single_run_at_a_time(self, settings, mapping, schema):
        started = threading.Event()
        release = threading.Event()

        def save(record):
            started.set()
            release.wait(timeout=5)

        processor = BatchProcessor(CallableSink(save), settings=settings)
        processor.add([make_grid("a.xlsx")])
        worker = threading.Thread(target=processor.run, args=(mapping, schema))
        worker.start()
        try:
            assert started.wait(timeout=5)
            assert processor.is_running
            with pytest.raises(RunInProgress):
                processor.run(mapping, schema)
            with pytest.raises(RunInProgress):
                processor.clear()
            # Items added mid-run wait for the next run
            processor.add([make_grid("b.xlsx")])
        finally:
            release.set()
            worker.join(timeout=5)

        assert not processor.is_running
        assert [item.status for item in processor.items] == [
            ItemStatus.COMPLETED,
            ItemStatus.QUEUED,
        ]


class TestReport:
    def test_report(self, processor, mapping, schema):
        processor.add([make_grid("a.xlsx"), make_grid("b.xlsx", sheet="Other")])
        processor.run(mapping, schema)
        report = processor.report()
        assert list(report.columns) == ["id", "name", "status", "extracted_fields", "error"]
        assert report["name"].tolist() == ["a.xlsx", "b.xlsx"]
        assert report["status"].tolist() == ["completed", "error"]
        assert report.loc[1, "error"] == "No valid fields could be computed"


class TestWorkbookFiles:
    def test_default_parser(self, tmp_path, sink, settings, mapping, schema):
        paths = []
        for name, sheet_title in [("good.xlsx", "Sheet1"), ("renamed.xlsx", "Summary")]:
            wb = Workbook()
            ws = wb.active
            ws.title = sheet_title
            ws["B2"] = 5
            ws["B4"] = 3
            ws["C2"] = "Inactive"
            path = tmp_path / name
            wb.save(path)
            paths.append(path)
        corrupt = tmp_path / "corrupt.xlsx"
        corrupt.write_bytes(b"garbage")
        paths.append(corrupt)

        processor = BatchProcessor(sink, settings=settings)
        processor.add(paths)
        stats = processor.run(mapping, schema)

        good, renamed, broken = processor.items
        assert good.status == ItemStatus.COMPLETED
        assert sink.records[0].data == {"revenue": 8, "status": "Inactive"}
        assert renamed.error == "No valid fields could be computed"
        assert broken.error.startswith("Failed to parse workbook corrupt.xlsx")
        assert (stats.total, stats.completed, stats.failed) == (3, 1, 2)

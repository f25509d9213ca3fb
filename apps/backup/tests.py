import io
import json
import zipfile
from datetime import date, datetime, timedelta, timezone as dt_timezone

from django.apps import apps
from django.contrib.auth import get_user_model
from django.core.cache.backends.locmem import LocMemCache
from django.core.files.uploadedfile import SimpleUploadedFile
from django.test import SimpleTestCase, TestCase
from rest_framework.test import APITestCase
from rest_framework_simplejwt.tokens import RefreshToken

from apps.store.store import DocumentStore

from .exceptions import BackupParseError, NothingToExport, RowValidationError, UnsupportedCollection
from .services.exporter import BackupExporter
from .services.importer import BackupImporter, prepare_row
from .services.state import LastBackupTracker
from .utils.archive import build_zip
from .utils.csv_codec import BOM, decode_upload, dump_csv, load_csv
from .utils.flatten import flatten_record
from .utils.snapshot import dump_snapshot, load_snapshot, snapshot_record
from .utils.timestamps import revive_timestamps, tag_timestamps, to_iso

WHEN = datetime(2024, 3, 5, 14, 30, 15, 250000, tzinfo=dt_timezone.utc)
COLLECTIONS = ("clientes", "fornecedores", "pecas", "movimentacoes")


def _fresh_tracker():
    cache = LocMemCache("backup-tests", {})
    cache.clear()
    return LastBackupTracker(cache)


class TimestampTests(SimpleTestCase):
    def test_iso_is_utc_with_milliseconds(self):
        self.assertEqual(to_iso(WHEN), "2024-03-05T14:30:15.250Z")

    def test_tagging_reaches_any_depth(self):
        tree = {"a": WHEN, "b": [{"c": WHEN}], "d": "x"}
        tagged = tag_timestamps(tree)
        self.assertEqual(tagged["a"], {"_type": "timestamp", "value": "2024-03-05T14:30:15.250Z"})
        self.assertEqual(tagged["b"][0]["c"]["_type"], "timestamp")
        self.assertEqual(revive_timestamps(tagged), tree)

    def test_lookalikes_are_left_alone(self):
        node = {"_type": "timestamp", "value": 5}
        self.assertEqual(revive_timestamps(node), node)

    def test_records_with_reserved_field_names_stay_data(self):
        record = {"codigoPeca": "A1", "_type": "timestamp", "value": "2024-01-01"}
        self.assertEqual(revive_timestamps(record), record)

    def test_unreadable_tagged_value_is_left_alone(self):
        node = {"_type": "timestamp", "value": "lote 7"}
        self.assertEqual(revive_timestamps({"em": node}), {"em": node})


class FlattenTests(SimpleTestCase):
    def test_flat_record_unchanged(self):
        record = {"id": "1", "codigoPeca": "A", "quantidade": 3, "ativo": True, "tags": ["x"]}
        self.assertEqual(flatten_record(record), record)

    def test_one_level_only(self):
        record = {
            "nome": "Oficina",
            "tipo": {"cliente": True, "mecanico": False},
            "endereco": {"cidade": "Campinas", "geo": {"lat": 1}},
            "tags": ["a", "b"],
        }
        self.assertEqual(
            flatten_record(record),
            {
                "nome": "Oficina",
                "tipo.cliente": True,
                "tipo.mecanico": False,
                "endereco.cidade": "Campinas",
                "endereco.geo": {"lat": 1},
                "tags": ["a", "b"],
            },
        )

    def test_top_level_timestamp_in_local_time(self):
        # America/Sao_Paulo is UTC-3.
        self.assertEqual(flatten_record({"data": WHEN}), {"data": "2024-03-05 11:30:15"})


class CsvCodecTests(SimpleTestCase):
    def test_header_is_union_and_missing_cells_are_empty(self):
        text = dump_csv([{"id": "1", "a": "x"}, {"id": "2", "b": "y"}], with_bom=False)
        self.assertEqual(text, "id,a,b\r\n1,x,\r\n2,,y\r\n")

    def test_bom_and_cell_rendering(self):
        text = dump_csv([{"ativo": True, "lista": [1, 2], "vazio": None}])
        self.assertTrue(text.startswith(BOM))
        self.assertIn('true,"[1, 2]",', text)

    def test_special_characters_survive_parsing(self):
        records = [{"id": "1", "descricao": 'Filtro "premium", 2L\nlinha'}]
        rows = load_csv(dump_csv(records))
        self.assertEqual(rows, [{"id": "1", "descricao": 'Filtro "premium", 2L\nlinha'}])

    def test_empty_export(self):
        with self.assertRaises(NothingToExport):
            dump_csv([])

    def test_empty_lines_skipped_and_short_rows_padded(self):
        rows = load_csv("a,b\r\n1\r\n\r\n,\r\n3,4\r\n")
        self.assertEqual(rows, [{"a": "1", "b": ""}, {"a": "", "b": ""}, {"a": "3", "b": "4"}])

    def test_headerless_or_undecodable(self):
        with self.assertRaises(BackupParseError):
            load_csv("")
        with self.assertRaises(BackupParseError):
            decode_upload(b"\xff\xfe\x00bad")


class ArchiveAndSnapshotTests(SimpleTestCase):
    def test_zip_entries(self):
        content = build_zip([("pecas.csv", BOM + "id\r\n1\r\n")])
        with zipfile.ZipFile(io.BytesIO(content)) as archive:
            self.assertEqual(archive.namelist(), ["pecas.csv"])
            self.assertEqual(archive.read("pecas.csv").decode("utf-8"), BOM + "id\r\n1\r\n")

    def test_snapshot_round_trip(self):
        text = dump_snapshot({"movimentacoes": [snapshot_record("m1", {"em": WHEN, "itens": [{"em": WHEN}]})]})
        self.assertEqual(json.loads(text)["movimentacoes"][0]["_id"], "m1")
        writes = load_snapshot(text, COLLECTIONS)
        self.assertEqual(len(writes), 1)
        self.assertEqual(writes[0].doc_id, "m1")
        self.assertEqual(writes[0].body, {"em": WHEN, "itens": [{"em": WHEN}]})

    def test_snapshot_rejections(self):
        bad_files = [
            "not json",
            "[]",
            '{"usuarios": []}',
            '{"pecas": {}}',
            '{"pecas": ["x"]}',
            '{"pecas": [{"codigoPeca": "A"}]}',
            '{"pecas": [{"_id": ""}]}',
            json.dumps({"pecas": [{"_id": "x" * 65}]}),
        ]
        for text in bad_files:
            with self.subTest(text=text):
                with self.assertRaises(BackupParseError):
                    load_snapshot(text, COLLECTIONS, max_id_length=64)

    def test_snapshot_id_at_length_limit(self):
        writes = load_snapshot(json.dumps({"pecas": [{"_id": "x" * 64}]}), COLLECTIONS, max_id_length=64)
        self.assertEqual(writes[0].doc_id, "x" * 64)


class PrepareRowTests(SimpleTestCase):
    def test_required_field(self):
        with self.assertRaises(RowValidationError):
            prepare_row("pecas", {"codigoPeca": "  ", "descricao": "X"})

    def test_id_dropped_and_flags_collapsed(self):
        body = prepare_row(
            "clientes",
            {"id": "old", "nomeRazaoSocial": "Oficina", "tipo.cliente": "TRUE", "tipo.mecanico": "false"},
        )
        self.assertEqual(body, {"nomeRazaoSocial": "Oficina", "tipo": {"cliente": True, "mecanico": False}})

    def test_legacy_type_cell(self):
        body = prepare_row("clientes", {"nomeRazaoSocial": "Oficina", "tipo": "{'cliente': true, 'mecanico': true}"})
        self.assertEqual(body["tipo"], {"cliente": True, "mecanico": True})
        with self.assertRaises(RowValidationError):
            prepare_row("clientes", {"nomeRazaoSocial": "Oficina", "tipo": "{cliente"})
        with self.assertRaises(RowValidationError):
            prepare_row(
                "clientes", {"nomeRazaoSocial": "Oficina", "tipo": "{'_type': 'timestamp', 'value': '2024-01-01'}"}
            )


class ExporterTests(TestCase):
    def setUp(self):
        self.store = DocumentStore()
        self.tracker = _fresh_tracker()
        self.exporter = BackupExporter(self.store, self.tracker, today=lambda: date(2024, 3, 5))

    def test_collection_csv(self):
        self.store.upsert(
            "clientes",
            "c1",
            {"nomeRazaoSocial": "Oficina", "tipo": {"cliente": True, "mecanico": False}, "criadoEm": WHEN},
        )
        artifact = self.exporter.export_csv("clientes")
        self.assertEqual(artifact.filename, "backup_clientes_2024-03-05.csv")
        self.assertEqual(artifact.record_count, 1)
        rows = load_csv(decode_upload(artifact.content))
        self.assertEqual(
            rows,
            [
                {
                    "id": "c1",
                    "nomeRazaoSocial": "Oficina",
                    "tipo.cliente": "true",
                    "tipo.mecanico": "false",
                    "criadoEm": "2024-03-05 11:30:15",
                }
            ],
        )
        self.assertIsNone(self.tracker.get())

    def test_empty_and_unknown_collections(self):
        for collection in COLLECTIONS:
            with self.subTest(collection=collection):
                with self.assertRaises(NothingToExport):
                    self.exporter.export_csv(collection)
        with self.assertRaises(UnsupportedCollection):
            self.exporter.export_csv("configuracoes")
        with self.assertRaises(NothingToExport):
            self.exporter.export_zip()
        self.assertIsNone(self.tracker.get())

    def test_zip_skips_empty_collections(self):
        self.store.upsert("pecas", "p1", {"codigoPeca": "A"})
        self.store.upsert("clientes", "c1", {"nomeRazaoSocial": "B"})
        artifact = self.exporter.export_zip()
        self.assertEqual(artifact.filename, "backup_geral_2024-03-05.zip")
        with zipfile.ZipFile(io.BytesIO(artifact.content)) as archive:
            self.assertEqual(archive.namelist(), ["clientes.csv", "pecas.csv"])
            self.assertTrue(archive.read("pecas.csv").decode("utf-8").startswith(BOM))
        self.assertIsNotNone(self.tracker.get())

    def test_json_backup_round_trips_through_restore(self):
        self.store.upsert("movimentacoes", "m1", {"dataMovimentacao": WHEN, "historico": [{"em": WHEN}]})
        self.store.upsert("pecas", "p1", {"codigoPeca": "A"})
        self.store.upsert("configuracoes", "dadosEmpresa", {"nome": "Fora do backup"})
        artifact = self.exporter.export_json()
        self.assertEqual(artifact.filename, "backup_completo_2024-03-05.json")
        self.assertEqual(list(json.loads(artifact.content)), list(COLLECTIONS))
        self.assertEqual(artifact.record_count, 2)
        self.assertIsNotNone(self.tracker.get())

        self.store.upsert("movimentacoes", "m1", {"dataMovimentacao": WHEN + timedelta(days=1)})
        result = BackupImporter(self.store).restore_json(artifact.content.decode("utf-8"))
        self.assertEqual(result.counts, {"movimentacoes": 1, "pecas": 1})
        restored = self.store.get_by_id("movimentacoes", "m1")
        self.assertEqual(restored.data, {"dataMovimentacao": WHEN, "historico": [{"em": WHEN}]})


class ImporterTests(TestCase):
    def setUp(self):
        self.store = DocumentStore()
        self.importer = BackupImporter(self.store)

    def test_restore_is_upsert_only(self):
        self.store.upsert("pecas", "keep", {"codigoPeca": "K"})
        self.importer.restore_json('{"pecas": [{"_id": "p1", "codigoPeca": "A"}]}')
        self.assertEqual(self.store.get_by_id("pecas", "keep").data, {"codigoPeca": "K"})
        self.assertEqual(self.store.get_by_id("pecas", "p1").data, {"codigoPeca": "A"})

    def test_invalid_restore_writes_nothing(self):
        text = '{"pecas": [{"_id": "p1", "codigoPeca": "A"}, {"codigoPeca": "sem id"}]}'
        with self.assertRaises(BackupParseError):
            self.importer.restore_json(text)
        self.assertEqual(self.store.count("pecas"), 0)

    def test_csv_rows_are_independent(self):
        text = BOM + "id,codigoPeca,descricao\r\nx1,A1,Filtro\r\nx2,,Sem código\r\nx3,A3,Vela\r\n"
        result = self.importer.import_csv("pecas", text)
        self.assertEqual((result.success_count, result.error_count), (2, 1))
        docs = self.store.list_all("pecas")
        self.assertEqual(sorted(doc.get("codigoPeca") for doc in docs), ["A1", "A3"])
        self.assertTrue(all(doc.id not in ("x1", "x3") and "id" not in doc.data for doc in docs))

    def test_csv_import_is_additive(self):
        text = "codigoPeca\r\nA1\r\n"
        self.importer.import_csv("pecas", text)
        self.importer.import_csv("pecas", text)
        self.assertEqual(self.store.count("pecas"), 2)

    def test_customer_csv_from_export(self):
        text = "id,nomeRazaoSocial,tipo.cliente,tipo.mecanico,status\r\nc1,Oficina,true,false,Ativo\r\n"
        self.importer.import_csv("clientes", text)
        doc = self.store.list_all("clientes")[0]
        self.assertEqual(doc.get("tipo"), {"cliente": True, "mecanico": False})

    def test_blank_cell_rows_count_as_errors(self):
        result = self.importer.import_csv("pecas", "codigoPeca,descricao\r\nA1,Filtro\r\n,\r\n\r\n")
        self.assertEqual((result.success_count, result.error_count), (1, 1))

    def test_reserved_field_names_in_csv_stay_plain_strings(self):
        text = "codigoPeca,descricao,_type,value\r\nA1,Filtro,timestamp,lote 7\r\nA2,Vela,timestamp,2024-01-01\r\n"
        result = self.importer.import_csv("pecas", text)
        self.assertEqual((result.success_count, result.error_count), (2, 0))

        docs = sorted(self.store.list_all("pecas"), key=lambda doc: doc.get("codigoPeca"))
        self.assertEqual([doc.get("value") for doc in docs], ["lote 7", "2024-01-01"])
        self.assertEqual(docs[0].get("_type"), "timestamp")

        artifact = BackupExporter(self.store, _fresh_tracker()).export_csv("pecas")
        rows = load_csv(decode_upload(artifact.content))
        self.assertEqual(sorted(row["value"] for row in rows), ["2024-01-01", "lote 7"])

    def test_tagged_looking_type_cell_is_rejected(self):
        text = "nomeRazaoSocial,tipo\r\nOficina,\"{'_type': 'timestamp', 'value': '2024-01-01'}\"\r\nBoa,\"{'cliente': true}\"\r\n"
        result = self.importer.import_csv("clientes", text)
        self.assertEqual((result.success_count, result.error_count), (1, 1))
        docs = self.store.list_all("clientes")
        self.assertEqual([doc.get("tipo") for doc in docs], [{"cliente": True, "mecanico": False}])

    def test_restore_rejects_overlong_id(self):
        with self.assertRaises(BackupParseError):
            self.importer.restore_json(json.dumps({"pecas": [{"_id": "p" * 65, "codigoPeca": "A"}]}))
        self.assertEqual(self.store.count("pecas"), 0)

    def test_movements_csv_refused(self):
        with self.assertRaises(UnsupportedCollection):
            self.importer.import_csv("movimentacoes", "pecaId\r\n1\r\n")


class LastBackupTrackerTests(SimpleTestCase):
    def test_persists_and_reports_staleness(self):
        cache = LocMemCache("backup-tracker-tests", {})
        cache.clear()
        tracker = LastBackupTracker(cache)
        self.assertIsNone(tracker.get())
        self.assertFalse(tracker.is_stale())

        tracker.set(WHEN)
        reloaded = LastBackupTracker(cache)
        self.assertEqual(reloaded.get(), datetime(2024, 3, 5, 14, 30, 15, 250000, tzinfo=dt_timezone.utc))
        self.assertFalse(reloaded.is_stale(now=WHEN + timedelta(hours=23)))
        self.assertTrue(reloaded.is_stale(now=WHEN + timedelta(hours=25)))

    def test_unreadable_marker_is_ignored(self):
        cache = LocMemCache("backup-tracker-tests", {})
        cache.set("lastBackupDate", "ontem")
        self.assertIsNone(LastBackupTracker(cache).get())


class BackupApiTests(APITestCase):
    def setUp(self):
        user = get_user_model().objects.create_user(username="tester", password="pass1234")
        token = RefreshToken.for_user(user)
        self.client.credentials(HTTP_AUTHORIZATION=f"Bearer {token.access_token}")
        self.store = DocumentStore()

        config = apps.get_app_config("backup")
        self.addCleanup(setattr, config, "tracker", config.tracker)
        config.tracker = _fresh_tracker()
        self.tracker = config.tracker

    def _upload(self, url, name, content):
        return self.client.post(url, {"file": SimpleUploadedFile(name, content)}, format="multipart")

    def test_csv_download(self):
        self.store.upsert("pecas", "p1", {"codigoPeca": "A"})
        resp = self.client.get("/api/backup/export/csv/pecas/")
        self.assertEqual(resp.status_code, 200)
        self.assertIn("attachment;", resp["Content-Disposition"])
        self.assertIn("backup_pecas_", resp["Content-Disposition"])
        self.assertTrue(resp.content.startswith(BOM.encode("utf-8")))

    def test_empty_export_notice(self):
        resp = self.client.get("/api/backup/export/csv/pecas/")
        self.assertEqual(resp.status_code, 404)
        self.assertEqual(resp.data["notice"]["level"], "warning")
        resp = self.client.get("/api/backup/export/zip/")
        self.assertEqual(resp.status_code, 404)

    def test_json_export_updates_status(self):
        self.assertIsNone(self.client.get("/api/backup/status/").data["lastBackup"])
        resp = self.client.get("/api/backup/export/json/")
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp["Content-Type"], "application/json")
        status = self.client.get("/api/backup/status/").data
        self.assertIsNotNone(status["lastBackup"])
        self.assertFalse(status["stale"])

    def test_json_restore_upload(self):
        payload = json.dumps({"pecas": [{"_id": "p1", "codigoPeca": "A"}]}).encode("utf-8")
        resp = self._upload("/api/backup/import/json/", "backup.json", payload)
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.data["total"], 1)
        self.assertEqual(self.store.get_by_id("pecas", "p1").data, {"codigoPeca": "A"})

    def test_corrupted_restore_upload(self):
        resp = self._upload("/api/backup/import/json/", "backup.json", b"{quebrado")
        self.assertEqual(resp.status_code, 400)
        self.assertEqual(resp.data["notice"]["title"], "Erro na importação")

    def test_missing_file(self):
        resp = self.client.post("/api/backup/import/json/", {}, format="multipart")
        self.assertEqual(resp.status_code, 400)

    def test_csv_import_upload(self):
        content = (BOM + "razaoSocial,cnpj\r\nDistribuidora,12345678000190\r\n,00000000000000\r\n").encode("utf-8")
        resp = self._upload("/api/backup/import/csv/fornecedores/", "fornecedores.csv", content)
        self.assertEqual(resp.status_code, 200)
        self.assertEqual((resp.data["successCount"], resp.data["errorCount"]), (1, 1))
        self.assertEqual(resp.data["notice"]["level"], "warning")

    def test_csv_import_into_movements_refused(self):
        resp = self._upload("/api/backup/import/csv/movimentacoes/", "m.csv", b"pecaId\r\n1\r\n")
        self.assertEqual(resp.status_code, 400)
        self.assertEqual(self.store.count("movimentacoes"), 0)

from datetime import datetime, timedelta, timezone as dt_timezone

from django.test import TestCase
from django.utils import timezone

from .models import Document
from .store import DocumentNotFound, DocumentStore, StoreError


class DocumentStoreTests(TestCase):
    def setUp(self):
        self.store = DocumentStore()

    def test_create_assigns_id_and_keeps_nested_values(self):
        doc_id = self.store.create("clientes", {"nomeRazaoSocial": "Oficina A", "tipo": {"cliente": True}})
        doc = self.store.get_by_id("clientes", doc_id)
        self.assertEqual(doc.id, doc_id)
        self.assertEqual(doc.data["tipo"], {"cliente": True})
        self.assertEqual(doc.to_dict()["id"], doc_id)

    def test_datetimes_survive_storage(self):
        when = datetime(2024, 3, 5, 14, 30, 15, 250000, tzinfo=dt_timezone.utc)
        doc_id = self.store.create("movimentacoes", {"dataMovimentacao": when, "itens": [{"em": when}]})
        doc = self.store.get_by_id("movimentacoes", doc_id)
        self.assertEqual(doc.data["dataMovimentacao"], when)
        self.assertEqual(doc.data["itens"][0]["em"], when)
        raw = Document.objects.get(doc_id=doc_id)
        self.assertIsInstance(raw.data["dataMovimentacao"], datetime)

    def test_get_by_id_missing_returns_none(self):
        self.assertIsNone(self.store.get_by_id("pecas", "nope"))

    def test_same_id_in_different_collections(self):
        self.store.upsert("pecas", "x1", {"codigoPeca": "A"})
        self.store.upsert("fornecedores", "x1", {"razaoSocial": "B"})
        self.assertEqual(self.store.get_by_id("pecas", "x1").data, {"codigoPeca": "A"})
        self.assertEqual(self.store.get_by_id("fornecedores", "x1").data, {"razaoSocial": "B"})

    def test_upsert_replaces_or_merges(self):
        self.store.upsert("pecas", "p1", {"codigoPeca": "A", "descricao": "Filtro"})
        self.store.upsert("pecas", "p1", {"codigoPeca": "B"})
        self.assertEqual(self.store.get_by_id("pecas", "p1").data, {"codigoPeca": "B"})
        self.store.upsert("pecas", "p1", {"descricao": "Vela"}, merge=True)
        self.assertEqual(self.store.get_by_id("pecas", "p1").data, {"codigoPeca": "B", "descricao": "Vela"})
        self.assertEqual(Document.objects.filter(collection="pecas").count(), 1)

    def test_update_fields_requires_existing_document(self):
        with self.assertRaises(DocumentNotFound):
            self.store.update_fields("pecas", "missing", {"status": "Inativo"})

    def test_non_mapping_body_is_rejected(self):
        with self.assertRaises(StoreError):
            self.store.create("pecas", ["not", "a", "dict"])

    def test_query_filters_by_nested_field_and_sorts(self):
        self.store.create("clientes", {"nomeRazaoSocial": "Zeta", "tipo": {"mecanico": True}, "status": "Ativo"})
        self.store.create("clientes", {"nomeRazaoSocial": "Alfa", "tipo": {"mecanico": True}, "status": "Ativo"})
        self.store.create("clientes", {"nomeRazaoSocial": "Beta", "tipo": {"mecanico": False}, "status": "Ativo"})
        docs = self.store.query(
            "clientes",
            [("status", "==", "Ativo"), ("tipo.mecanico", "==", True)],
            order_by="nomeRazaoSocial",
        )
        self.assertEqual([doc.get("nomeRazaoSocial") for doc in docs], ["Alfa", "Zeta"])

    def test_query_compares_datetimes(self):
        now = timezone.now()
        self.store.create("movimentacoes", {"n": 1, "dataMovimentacao": now - timedelta(days=3)})
        self.store.create("movimentacoes", {"n": 2, "dataMovimentacao": now})
        docs = self.store.query("movimentacoes", [("dataMovimentacao", ">=", now - timedelta(days=1))])
        self.assertEqual([doc.get("n") for doc in docs], [2])
        self.assertEqual(self.store.count("movimentacoes", [("dataMovimentacao", "<", now)]), 1)

    def test_unknown_operator(self):
        with self.assertRaises(StoreError):
            self.store.query("pecas", [("codigoPeca", "~", "A")])

    def test_batch_upsert_is_all_or_nothing(self):
        self.store.upsert("pecas", "keep", {"codigoPeca": "K"})
        writes = [
            ("pecas", "keep", {"codigoPeca": "K2"}),
            ("pecas", "new", {"codigoPeca": "N"}),
            ("pecas", "bad", "not a mapping"),
        ]
        with self.assertRaises(StoreError):
            self.store.batch_upsert(writes)
        self.assertEqual(self.store.get_by_id("pecas", "keep").data, {"codigoPeca": "K"})
        self.assertIsNone(self.store.get_by_id("pecas", "new"))

    def test_batch_upsert_counts_writes(self):
        count = self.store.batch_upsert([("pecas", "a", {"codigoPeca": "A"}), ("clientes", "b", {"x": 1})])
        self.assertEqual(count, 2)
        self.assertEqual(Document.objects.count(), 2)


class DocumentPageTests(TestCase):
    def setUp(self):
        self.store = DocumentStore()
        for idx in range(5):
            self.store.upsert("pecas", f"p{idx}", {"descricao": f"Peça {idx}", "status": "Ativo"})
        self.store.upsert("pecas", "off", {"descricao": "Peça 9", "status": "Inativo"})

    def _names(self, page):
        return [doc.get("descricao") for doc in page.documents]

    def test_walks_forward_and_back(self):
        filters = [("status", "==", "Ativo")]
        first = self.store.page("pecas", "descricao", filters, limit=2)
        self.assertEqual(self._names(first), ["Peça 0", "Peça 1"])
        self.assertIsNone(first.previous_cursor)
        self.assertEqual(first.next_cursor, "p1")

        second = self.store.page("pecas", "descricao", filters, start_after=first.next_cursor, limit=2)
        self.assertEqual(self._names(second), ["Peça 2", "Peça 3"])

        last = self.store.page("pecas", "descricao", filters, start_after=second.next_cursor, limit=2)
        self.assertEqual(self._names(last), ["Peça 4"])
        self.assertIsNone(last.next_cursor)

        back = self.store.page("pecas", "descricao", filters, end_before=second.previous_cursor, limit=2)
        self.assertEqual(self._names(back), ["Peça 0", "Peça 1"])
        self.assertIsNone(back.previous_cursor)

    def test_unknown_cursor(self):
        with self.assertRaises(DocumentNotFound):
            self.store.page("pecas", "descricao", start_after="ghost")

import base64
from datetime import date, timedelta
from io import BytesIO

from django.contrib.auth import get_user_model
from django.core.management import call_command
from django.utils import timezone
from PIL import Image
from rest_framework.test import APITestCase
from rest_framework_simplejwt.tokens import RefreshToken

from apps.store.store import DocumentStore

from .constants import KIND_RETURN, KIND_WARRANTY, OUTCOME_APPROVED, OUTCOME_PENDING
from .services import movements


class RegistryApiTests(APITestCase):
    def setUp(self):
        user = get_user_model().objects.create_user(username="tester", password="pass1234")
        token = RefreshToken.for_user(user)
        self.client.credentials(HTTP_AUTHORIZATION=f"Bearer {token.access_token}")
        self.store = DocumentStore()

    def _customer(self, name, cliente=True, mecanico=False):
        resp = self.client.post(
            "/api/cadastros/clientes/",
            {"nomeRazaoSocial": name, "tipo": {"cliente": cliente, "mecanico": mecanico}},
            format="json",
        )
        self.assertEqual(resp.status_code, 201, resp.data)
        return resp.data["id"]

    def _seed_movement_refs(self):
        part_id = self.store.create("pecas", {"codigoPeca": "FLT-01", "descricao": "Filtro de óleo", "status": "Ativo"})
        customer_id = self._customer("Cliente Um")
        mechanic_id = self._customer("Mecânico Um", cliente=False, mecanico=True)
        supplier_id = self.store.create("fornecedores", {"razaoSocial": "Distribuidora Sul", "status": "Ativo"})
        return part_id, customer_id, mechanic_id, supplier_id

    def _movement_payload(self, part_id, customer_id, mechanic_id):
        return {
            "pecaId": part_id,
            "pecaCodigo": "FLT-01",
            "quantidade": 2,
            "clienteId": customer_id,
            "mecanicoId": mechanic_id,
            "dataVenda": "2024-05-10T10:00:00-03:00",
        }

    def test_requires_authentication(self):
        self.client.credentials()
        resp = self.client.get("/api/cadastros/clientes/")
        self.assertEqual(resp.status_code, 401)

    def test_customer_needs_a_type(self):
        resp = self.client.post(
            "/api/cadastros/clientes/",
            {"nomeRazaoSocial": "Sem Tipo", "tipo": {"cliente": False, "mecanico": False}},
            format="json",
        )
        self.assertEqual(resp.status_code, 400)
        self.assertIn("tipo", resp.data)

    def test_unknown_collection_is_404(self):
        resp = self.client.get("/api/cadastros/usuarios/")
        self.assertEqual(resp.status_code, 404)

    def test_create_defaults_status_and_lists_active_only(self):
        first = self._customer("Oficina B")
        self._customer("Oficina A")
        resp = self.client.post(f"/api/cadastros/clientes/{first}/status/", {"status": "Inativo"}, format="json")
        self.assertEqual(resp.status_code, 200)

        resp = self.client.get("/api/cadastros/clientes/")
        self.assertEqual([row["nomeRazaoSocial"] for row in resp.data["results"]], ["Oficina A"])
        self.assertEqual(resp.data["results"][0]["status"], "Ativo")

        resp = self.client.get("/api/cadastros/clientes/", {"status": "Inativo"})
        self.assertEqual([row["id"] for row in resp.data["results"]], [first])

    def test_list_pages_by_label(self):
        for idx in range(12):
            self.store.create("pecas", {"codigoPeca": f"C{idx:02d}", "descricao": f"Peça {idx:02d}", "status": "Ativo"})
        resp = self.client.get("/api/cadastros/pecas/")
        self.assertEqual(len(resp.data["results"]), 10)
        self.assertIsNotNone(resp.data["next"])
        resp = self.client.get("/api/cadastros/pecas/", {"after": resp.data["next"]})
        self.assertEqual([row["descricao"] for row in resp.data["results"]], ["Peça 10", "Peça 11"])
        self.assertIsNone(resp.data["next"])

    def test_detail_patch_and_missing(self):
        doc_id = self._customer("Oficina C")
        resp = self.client.patch(f"/api/cadastros/clientes/{doc_id}/", {"observacao": "VIP"}, format="json")
        self.assertEqual(resp.status_code, 200)
        resp = self.client.get(f"/api/cadastros/clientes/{doc_id}/")
        self.assertEqual(resp.data["observacao"], "VIP")
        self.assertEqual(resp.data["nomeRazaoSocial"], "Oficina C")
        resp = self.client.get("/api/cadastros/clientes/missing/")
        self.assertEqual(resp.status_code, 404)

    def test_options_filter_by_role(self):
        self._customer("Só Cliente")
        self._customer("Só Mecânico", cliente=False, mecanico=True)
        resp = self.client.get("/api/cadastros/clientes/opcoes/", {"role": "mecanico"})
        self.assertEqual([row["label"] for row in resp.data], ["Só Mecânico"])

    def test_part_lookup_by_code(self):
        self.store.create("pecas", {"codigoPeca": "VEL-9", "descricao": "Vela", "status": "Ativo"})
        resp = self.client.get("/api/pecas/busca/", {"codigo": "VEL-9"})
        self.assertEqual(resp.data["descricao"], "Vela")
        resp = self.client.get("/api/pecas/busca/", {"codigo": "NADA"})
        self.assertEqual(resp.status_code, 404)

    def test_return_copies_display_names(self):
        part_id, customer_id, mechanic_id, _ = self._seed_movement_refs()
        payload = self._movement_payload(part_id, customer_id, mechanic_id)
        payload.update({"requisicaoVenda": "REQ-1", "acaoRequisicao": "Alterada"})
        resp = self.client.post("/api/movimentacoes/devolucao/", payload, format="json")
        self.assertEqual(resp.status_code, 201, resp.data)

        doc = self.store.get_by_id("movimentacoes", resp.data["id"])
        self.assertEqual(doc.get("tipoMovimentacao"), KIND_RETURN)
        self.assertEqual(doc.get("pecaDescricao"), "Filtro de óleo")
        self.assertEqual(doc.get("clienteNome"), "Cliente Um")
        self.assertEqual(doc.get("mecanicoNome"), "Mecânico Um")
        self.assertIsNotNone(doc.get("dataMovimentacao").tzinfo)

    def test_movement_with_missing_reference(self):
        part_id, customer_id, _, _ = self._seed_movement_refs()
        payload = self._movement_payload(part_id, customer_id, "ghost")
        payload.update({"requisicaoVenda": "REQ-1", "acaoRequisicao": "Alterada"})
        resp = self.client.post("/api/movimentacoes/devolucao/", payload, format="json")
        self.assertEqual(resp.status_code, 400)
        self.assertEqual(self.store.count("movimentacoes"), 0)

    def test_warranty_outcome_flow(self):
        part_id, customer_id, mechanic_id, supplier_id = self._seed_movement_refs()
        payload = self._movement_payload(part_id, customer_id, mechanic_id)
        payload.update({"fornecedorId": supplier_id, "defeitoRelatado": "Vazamento na junta", "valorPeca": 120.5})
        resp = self.client.post("/api/movimentacoes/garantia/", payload, format="json")
        self.assertEqual(resp.status_code, 201, resp.data)
        warranty_id = resp.data["id"]

        doc = self.store.get_by_id("movimentacoes", warranty_id)
        self.assertEqual(doc.get("acaoRetorno"), OUTCOME_PENDING)
        self.assertEqual(doc.get("fornecedorNome"), "Distribuidora Sul")

        resp = self.client.patch(
            f"/api/movimentacoes/{warranty_id}/retorno/",
            {"acaoRetorno": OUTCOME_APPROVED, "nfRetorno": "123"},
            format="json",
        )
        self.assertEqual(resp.status_code, 200)
        resp = self.client.get(f"/api/movimentacoes/{warranty_id}/")
        self.assertEqual(resp.data["acaoRetorno"], OUTCOME_APPROVED)
        self.assertEqual(resp.data["nfRetorno"], "123")

    def test_outcome_on_return_is_rejected(self):
        part_id, customer_id, mechanic_id, _ = self._seed_movement_refs()
        payload = dict(self._movement_payload(part_id, customer_id, mechanic_id))
        payload.update({"requisicaoVenda": "REQ-2", "acaoRequisicao": "Excluída"})
        return_id = self.client.post("/api/movimentacoes/devolucao/", payload, format="json").data["id"]
        resp = self.client.patch(
            f"/api/movimentacoes/{return_id}/retorno/", {"acaoRetorno": OUTCOME_APPROVED}, format="json"
        )
        self.assertEqual(resp.status_code, 400)

    def test_search_by_kind_and_date(self):
        part_id, customer_id, mechanic_id, supplier_id = self._seed_movement_refs()
        data = {
            "pecaId": part_id,
            "clienteId": customer_id,
            "mecanicoId": mechanic_id,
            "requisicaoVenda": "REQ-3",
            "acaoRequisicao": "Alterada",
        }
        movements.register_return(self.store, data)
        movements.register_warranty(self.store, {**data, "fornecedorId": supplier_id})

        resp = self.client.get("/api/movimentacoes/", {"tipoMovimentacao": KIND_WARRANTY})
        self.assertEqual([row["tipoMovimentacao"] for row in resp.data], [KIND_WARRANTY])

        today = timezone.localdate()
        resp = self.client.get("/api/movimentacoes/", {"dataInicio": today.isoformat(), "dataFim": today.isoformat()})
        self.assertEqual(len(resp.data), 2)
        yesterday = (today - timedelta(days=1)).isoformat()
        resp = self.client.get("/api/movimentacoes/", {"dataFim": yesterday})
        self.assertEqual(resp.data, [])

    def test_variant_fields_stay_apart(self):
        part_id, customer_id, mechanic_id, supplier_id = self._seed_movement_refs()
        data = {"pecaId": part_id, "clienteId": customer_id, "mecanicoId": mechanic_id, "acaoRequisicao": "Alterada"}
        warranty_id = movements.register_warranty(self.store, {**data, "fornecedorId": supplier_id})
        return_id = movements.register_return(self.store, {**data, "fornecedorId": supplier_id})

        self.assertNotIn("acaoRequisicao", self.store.get_by_id("movimentacoes", warranty_id).data)
        self.assertNotIn("fornecedorId", self.store.get_by_id("movimentacoes", return_id).data)

    def test_seed_demo_movements_keep_their_own_fields(self):
        call_command("seed_demo", count=2)
        docs = self.store.list_all("movimentacoes")
        self.assertTrue(docs)
        for doc in docs:
            if doc.get("tipoMovimentacao") == KIND_WARRANTY:
                self.assertNotIn("acaoRequisicao", doc.data)
            else:
                self.assertNotIn("fornecedorId", doc.data)

    def test_dashboard_counts(self):
        part_id, customer_id, mechanic_id, supplier_id = self._seed_movement_refs()
        data = {"pecaId": part_id, "clienteId": customer_id, "mecanicoId": mechanic_id}
        movements.register_return(self.store, data)
        movements.register_warranty(self.store, {**data, "fornecedorId": supplier_id})

        resp = self.client.get("/api/dashboard/")
        self.assertEqual(
            resp.data,
            {"devolucoesMes": 1, "garantiasPendentes": 1, "clientesAtivos": 2, "pecasAtivas": 1},
        )

    def test_dashboard_month_window(self):
        stats = movements.dashboard_stats(self.store, today=date(2001, 1, 15))
        self.assertEqual(stats["devolucoesMes"], 0)

    def test_company_config_with_logo(self):
        buff = BytesIO()
        Image.new("RGB", (4, 4), (255, 0, 0)).save(buff, format="PNG")
        logo = "data:image/png;base64," + base64.b64encode(buff.getvalue()).decode("ascii")
        payload = {
            "nome": "Auto Peças Teste",
            "endereco": "Rua Principal, 123",
            "telefone": "(11) 99999-0000",
            "email": "contato@example.com",
            "logoDataUrl": logo,
        }
        resp = self.client.put("/api/empresa/", payload, format="json")
        self.assertEqual(resp.status_code, 200, resp.data)
        resp = self.client.get("/api/empresa/")
        self.assertEqual(resp.data["nome"], "Auto Peças Teste")
        self.assertEqual(resp.data["logoDataUrl"], logo)

        resp = self.client.put("/api/empresa/", {**payload, "logoDataUrl": "data:image/png;base64,AAAA"}, format="json")
        self.assertEqual(resp.status_code, 400)

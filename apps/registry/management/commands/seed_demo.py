import base64
from datetime import timedelta
from io import BytesIO
from random import choice, randint

from django.core.management.base import BaseCommand
from django.utils import timezone
from PIL import Image

from apps.store.store import DocumentStore

from ...constants import ACTIVE, CUSTOMERS, MOVEMENTS, OUTCOME_APPROVED, PARTS, SUPPLIERS
from ...services import movements, records


def _make_logo_data_url(size=(160, 80), color=None) -> str:
    if color is None:
        color = (randint(20, 200), randint(40, 200), randint(80, 220))
    image = Image.new("RGB", size, color)
    buff = BytesIO()
    image.save(buff, format="PNG")
    return "data:image/png;base64," + base64.b64encode(buff.getvalue()).decode("ascii")


def _ensure_count(store, collection, target, factory):
    existing = store.count(collection)
    for idx in range(existing, target):
        factory(idx)


class Command(BaseCommand):
    help = "Seed demo data (customers, suppliers, parts, movements, company) for local/dev usage."

    def add_arguments(self, parser):
        parser.add_argument("--count", type=int, default=4)

    def handle(self, *args, **options):
        store = DocumentStore()
        count = options["count"]

        _ensure_count(
            store,
            CUSTOMERS,
            count,
            lambda idx: records.create_record(
                store,
                CUSTOMERS,
                {
                    "nomeRazaoSocial": f"Cliente Demo {idx + 1}",
                    "nomeFantasia": "",
                    "tipo": {"cliente": idx % 2 == 0, "mecanico": idx % 2 == 1 or idx == 0},
                    "status": ACTIVE,
                    "observacao": "",
                },
            ),
        )
        _ensure_count(
            store,
            SUPPLIERS,
            count,
            lambda idx: records.create_record(
                store,
                SUPPLIERS,
                {
                    "razaoSocial": f"Fornecedor Demo {idx + 1}",
                    "nomeFantasia": "",
                    "cnpj": f"{randint(10, 99)}.{randint(100, 999)}.{randint(100, 999)}/0001-{randint(10, 99)}",
                    "status": ACTIVE,
                    "observacao": "",
                },
            ),
        )
        _ensure_count(
            store,
            PARTS,
            count,
            lambda idx: records.create_record(
                store,
                PARTS,
                {"codigoPeca": f"PC-{idx + 1:04d}", "descricao": f"Peça demo {idx + 1}", "status": ACTIVE},
            ),
        )

        customers = store.list_all(CUSTOMERS)
        mechanics = [doc for doc in customers if doc.get("tipo", {}).get("mecanico")] or customers
        suppliers = store.list_all(SUPPLIERS)
        parts = store.list_all(PARTS)

        # Each round writes one return and one warranty.
        for idx in range(store.count(MOVEMENTS) // 2, count):
            part = parts[idx % len(parts)]
            common = {
                "pecaId": part.id,
                "pecaCodigo": part.get("codigoPeca"),
                "clienteId": choice(customers).id,
                "mecanicoId": choice(mechanics).id,
                "quantidade": randint(1, 5),
                "nfSaida": str(randint(10000, 99999)),
                "dataVenda": timezone.now() - timedelta(days=randint(1, 60)),
            }
            movements.register_return(
                store, {**common, "requisicaoVenda": f"REQ-{randint(1000, 9999)}", "acaoRequisicao": "Alterada"}
            )
            warranty_id = movements.register_warranty(
                store,
                {
                    **common,
                    "fornecedorId": choice(suppliers).id,
                    "valorPeca": randint(50, 900),
                    "defeitoRelatado": "Ruído ao acionar a peça.",
                },
            )
            if idx % 2 == 0:
                movements.update_warranty_outcome(
                    store, warranty_id, {"acaoRetorno": OUTCOME_APPROVED, "nfRetorno": str(randint(10000, 99999))}
                )

        if not records.get_company(store):
            records.save_company(
                store,
                {
                    "nome": "Auto Peças Demo",
                    "endereco": "Rua das Oficinas, 100 - Centro",
                    "telefone": "(11) 4000-1000",
                    "email": "contato@autopecas.example",
                    "website": "",
                    "cnpj": "",
                    "logoDataUrl": _make_logo_data_url(),
                },
            )

        self.stdout.write(self.style.SUCCESS("Demo data seeded."))

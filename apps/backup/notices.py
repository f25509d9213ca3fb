from dataclasses import asdict, dataclass

from django.contrib import messages

SUCCESS = "success"
WARNING = "warning"
ERROR = "error"

_LEVELS = {
    SUCCESS: messages.SUCCESS,
    WARNING: messages.WARNING,
    ERROR: messages.ERROR,
}

COLLECTION_LABELS = {
    "clientes": "Clientes/Mecânicos",
    "fornecedores": "Fornecedores",
    "pecas": "Peças",
    "movimentacoes": "Movimentações",
}


@dataclass(frozen=True)
class Notice:
    title: str
    description: str
    level: str = SUCCESS

    def as_dict(self):
        return asdict(self)


def collection_label(collection: str) -> str:
    return COLLECTION_LABELS.get(collection, collection)


def notify(request, notice: Notice) -> Notice:
    """Queue the notice for the session user; API clients also get it in the response body."""
    django_request = getattr(request, "_request", request)
    messages.add_message(
        django_request,
        _LEVELS[notice.level],
        f"{notice.title}: {notice.description}",
        fail_silently=True,
    )
    return notice

import base64
import binascii
import re
from io import BytesIO

from PIL import Image, UnidentifiedImageError
from rest_framework import serializers

from .constants import (
    ACTIVE,
    MOVEMENT_KINDS,
    REQUISITION_ACTIONS,
    STATUS_CHOICES,
    WARRANTY_OUTCOMES,
)

DATA_URL_RE = re.compile(r"^data:(image/[\w.+-]+);base64,(.+)$", re.DOTALL)


def _optional_text(**kwargs):
    return serializers.CharField(required=False, allow_blank=True, default="", **kwargs)


class CustomerTypeSerializer(serializers.Serializer):
    cliente = serializers.BooleanField(default=False)
    mecanico = serializers.BooleanField(default=False)


class CustomerSerializer(serializers.Serializer):
    nomeRazaoSocial = serializers.CharField(min_length=3, max_length=255)
    nomeFantasia = _optional_text(max_length=255)
    tipo = CustomerTypeSerializer()
    status = serializers.ChoiceField(choices=STATUS_CHOICES, default=ACTIVE)
    observacao = _optional_text()

    def validate_tipo(self, value):
        if not (value.get("cliente") or value.get("mecanico")):
            raise serializers.ValidationError("Selecione pelo menos um tipo.")
        return dict(value)


class SupplierSerializer(serializers.Serializer):
    razaoSocial = serializers.CharField(min_length=3, max_length=255)
    nomeFantasia = _optional_text(max_length=255)
    cnpj = serializers.CharField(min_length=14, max_length=18)
    status = serializers.ChoiceField(choices=STATUS_CHOICES, default=ACTIVE)
    observacao = _optional_text()


class PartSerializer(serializers.Serializer):
    codigoPeca = serializers.CharField(min_length=1, max_length=64)
    descricao = serializers.CharField(min_length=3, max_length=255)
    status = serializers.ChoiceField(choices=STATUS_CHOICES, default=ACTIVE)
    observacao = _optional_text()


class StatusSerializer(serializers.Serializer):
    status = serializers.ChoiceField(choices=STATUS_CHOICES)


class CompanySerializer(serializers.Serializer):
    nome = serializers.CharField(min_length=3)
    endereco = serializers.CharField(min_length=10)
    telefone = serializers.CharField(min_length=10)
    email = serializers.EmailField()
    website = serializers.URLField(required=False, allow_blank=True, default="")
    cnpj = _optional_text()
    logoDataUrl = _optional_text()

    def validate_logoDataUrl(self, value):
        if not value:
            return ""
        match = DATA_URL_RE.match(value)
        if not match:
            raise serializers.ValidationError("O logo deve ser uma imagem em data URL (base64).")
        try:
            raw = base64.b64decode(match.group(2), validate=True)
            with Image.open(BytesIO(raw)) as image:
                image.verify()
        except (binascii.Error, UnidentifiedImageError, OSError, ValueError):
            raise serializers.ValidationError("Não foi possível ler a imagem do logo.")
        return value


class MovementSerializer(serializers.Serializer):
    """Fields shared by both kinds of movement."""

    pecaId = serializers.CharField()
    pecaCodigo = serializers.CharField()
    quantidade = serializers.IntegerField(min_value=1)
    clienteId = serializers.CharField()
    mecanicoId = serializers.CharField()
    dataVenda = serializers.DateTimeField()
    observacao = _optional_text()


class ReturnSerializer(MovementSerializer):
    requisicaoVenda = serializers.CharField()
    acaoRequisicao = serializers.ChoiceField(choices=REQUISITION_ACTIONS)


class WarrantySerializer(MovementSerializer):
    fornecedorId = serializers.CharField()
    requisicaoVenda = _optional_text()
    requisicaoGarantia = _optional_text()
    defeitoRelatado = serializers.CharField(min_length=10)
    nfSaida = _optional_text()
    nfCompra = _optional_text()
    valorPeca = serializers.FloatField(required=False, default=0, min_value=0)


class WarrantyOutcomeSerializer(serializers.Serializer):
    acaoRetorno = serializers.ChoiceField(choices=WARRANTY_OUTCOMES)
    nfRetorno = _optional_text()


class MovementFilterSerializer(serializers.Serializer):
    tipoMovimentacao = serializers.ChoiceField(choices=["Todas"] + MOVEMENT_KINDS, default="Todas")
    statusGarantia = serializers.ChoiceField(choices=["Todos"] + WARRANTY_OUTCOMES, default="Todos")
    dataInicio = serializers.DateField(required=False)
    dataFim = serializers.DateField(required=False)
    clienteId = serializers.CharField(required=False)
    mecanicoId = serializers.CharField(required=False)
    fornecedorId = serializers.CharField(required=False)
    pecaCodigo = serializers.CharField(required=False)
    requisicaoVenda = serializers.CharField(required=False)
    numeroNF = serializers.CharField(required=False)

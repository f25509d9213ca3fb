CUSTOMERS = "clientes"
SUPPLIERS = "fornecedores"
PARTS = "pecas"
MOVEMENTS = "movimentacoes"
SETTINGS = "configuracoes"

COMPANY_CONFIG_ID = "dadosEmpresa"

ACTIVE = "Ativo"
INACTIVE = "Inativo"
STATUS_CHOICES = [ACTIVE, INACTIVE]

KIND_RETURN = "Devolução"
KIND_WARRANTY = "Garantia"
MOVEMENT_KINDS = [KIND_RETURN, KIND_WARRANTY]

REQUISITION_ACTIONS = ["Alterada", "Excluída"]

OUTCOME_PENDING = "Pendente"
OUTCOME_APPROVED = "Aprovada"
OUTCOME_REJECTED = "Recusada"
WARRANTY_OUTCOMES = [OUTCOME_PENDING, OUTCOME_APPROVED, OUTCOME_REJECTED]

ITEMS_PER_PAGE = 10
OPTIONS_LIMIT = 50

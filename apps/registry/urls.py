from django.urls import path

from . import views

urlpatterns = [
    path("dashboard/", views.dashboard, name="registry_dashboard"),
    path("empresa/", views.company, name="registry_company"),
    path("pecas/busca/", views.part_lookup, name="registry_part_lookup"),
    path("movimentacoes/", views.movement_search, name="registry_movements"),
    path("movimentacoes/devolucao/", views.return_create, name="registry_return_create"),
    path("movimentacoes/garantia/", views.warranty_create, name="registry_warranty_create"),
    path("movimentacoes/<str:doc_id>/", views.movement_detail, name="registry_movement_detail"),
    path("movimentacoes/<str:doc_id>/retorno/", views.warranty_outcome, name="registry_warranty_outcome"),
    path("cadastros/<str:collection>/", views.record_list, name="registry_record_list"),
    path("cadastros/<str:collection>/opcoes/", views.record_options, name="registry_record_options"),
    path("cadastros/<str:collection>/<str:doc_id>/", views.record_detail, name="registry_record_detail"),
    path("cadastros/<str:collection>/<str:doc_id>/status/", views.record_status, name="registry_record_status"),
]

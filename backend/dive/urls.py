from django.urls import path
from . import views

urlpatterns = [
    path("config/", views.game_config, name="dive-config"),
    path("curve/", views.curve_preview, name="dive-curve"),

    path("vaults/<int:vault_id>/", views.vault_detail, name="dive-vault"),
    path("vaults/<int:vault_id>/toggle-lock/", views.vault_toggle_lock, name="dive-vault-lock"),
    path("vaults/<int:vault_id>/deposit/", views.vault_deposit, name="dive-vault-deposit"),
    path("vaults/<int:vault_id>/withdraw/", views.vault_withdraw, name="dive-vault-withdraw"),
    path("vaults/<int:vault_id>/audit/", views.vault_audit, name="dive-vault-audit"),

    path("sessions/", views.open_session, name="dive-open"),
    path("sessions/<uuid:session_id>/", views.session_state, name="dive-state"),
    path("sessions/<uuid:session_id>/advance/", views.advance, name="dive-advance"),
    path("sessions/<uuid:session_id>/settle/", views.settle, name="dive-settle"),
    path("sessions/<uuid:session_id>/reveal/", views.reveal, name="dive-reveal"),
]

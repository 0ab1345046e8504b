# tests/test_auth.py
from sind_core.auth import authenticate
from sind_core.models import Client, Payment, User


def test_default_admin_login(store):
    user = authenticate(store, "admin", "admin")

    assert isinstance(user, User)
    assert user.username == "admin"
    assert user.is_admin


def test_username_is_case_insensitive(store):
    user = authenticate(store, "  VINICIUS ", "user")
    assert user is not None
    assert not user.is_admin


def test_password_is_case_sensitive(store):
    assert authenticate(store, "admin", "ADMIN") is None
    assert authenticate(store, "admin", "") is None


def test_unknown_user(store):
    assert authenticate(store, "ninguem", "admin") is None


def test_models_from_rows():
    client = Client.from_row({"id": 1, "nome_completo": "Ana Maria Souza", "cpf": "1", "extra": "x"})
    assert client.first_name == "Ana"
    assert client.is_active
    assert Client.from_row({"cpf": "2", "status": "Suspenso"}).first_name == "associado"
    assert not Client.from_row({"cpf": "2", "status": "Suspenso"}).is_active

    payment = Payment.from_row({"client_id": 1, "referencia": "2023-06", "valor": 50.0})
    assert payment.period == (2023, 6)
    assert Payment.from_row({"client_id": 1, "referencia": None, "valor": 1.0}).period is None

"""Shared fixtures: an app on in-memory sqlite with an in-process coordinator."""

import pytest

from app import create_app

REQUESTER = "0x" + "ab" * 20
OTHER = "0x" + "cd" * 20
PALETTE = ["#fff", "#000", "#abc", "#123", "#456"]


def make_app(**overrides):
    config = {
        "TESTING": True,
        "SQLALCHEMY_DATABASE_URI": "sqlite://",
        "VRF_COORDINATOR_SECRET": "coordinator-secret",
        "LINK_TOKEN_ADDRESS": None,
    }
    config.update(overrides)
    return create_app(config)


@pytest.fixture
def app():
    app = make_app()
    with app.app_context():
        yield app


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def minter(app):
    return app.extensions["rose_minter"]


@pytest.fixture
def coordinator(minter):
    return minter.coordinator

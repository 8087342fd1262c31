import pytest

from fakes import FakeAuth, FakeRepository, make_ctx


@pytest.fixture
def ctx(tmp_path):
    return make_ctx(tmp_path)


@pytest.fixture
def signed_out_ctx(tmp_path):
    return make_ctx(tmp_path, uid=None)


@pytest.fixture
def fake_auth():
    return FakeAuth()


@pytest.fixture
def repo_factory():
    def build(rows=None, key="id"):
        return FakeRepository(rows, key=key)
    return build

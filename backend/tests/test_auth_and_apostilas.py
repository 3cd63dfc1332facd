from fastapi.testclient import TestClient
from sqlmodel import Session, select

from concurso_prep import models
from concurso_prep.database import engine
from concurso_prep.main import app

client = TestClient(app)


def _headers(username):
    client.post('/auth/register', json={'username': username, 'password': 'pw'})
    r = client.post('/auth/login', json={'username': username, 'password': 'pw'})
    assert r.status_code == 200
    return {'Authorization': f"Bearer {r.json()['access_token']}"}


def _concurso(**kwargs):
    with Session(engine) as session:
        c = models.Concurso(**kwargs)
        session.add(c)
        session.commit()
        session.refresh(c)
        return c.id


def test_apostilas_require_authentication():
    r = client.get('/apostilas')
    assert r.status_code == 401
    assert 'error' in r.json()
    r2 = client.post('/apostilas', json={'title': 'x', 'url': 'http://x'})
    assert r2.status_code == 401
    r3 = client.get('/apostilas', headers={'Authorization': 'Bearer invalid.token.here'})
    assert r3.status_code == 401


def test_login_rejects_wrong_password():
    client.post('/auth/register', json={'username': 'wrongpw', 'password': 'right'})
    r = client.post('/auth/login', json={'username': 'wrongpw', 'password': 'wrong'})
    assert r.status_code == 401
    assert r.json() == {'error': 'invalid credentials'}


def test_create_requires_title_and_url():
    headers = _headers('apostila_validator')
    with Session(engine) as session:
        before = len(session.exec(select(models.Apostila)).all())
    for body in ({'url': 'http://x'}, {'title': 'T', 'url': ''}, {'title': '   ', 'url': 'http://x'}):
        r = client.post('/apostilas', json=body, headers=headers)
        assert r.status_code == 400
        assert r.json() == {'error': 'title and url are required'}
    with Session(engine) as session:
        assert len(session.exec(select(models.Apostila)).all()) == before


def test_create_and_list_filtered_by_concurso():
    headers = _headers('apostila_user')
    trt = _concurso(nome='TRT 2ª Região', categoria='Tribunais', ano=2025, banca='FCC')
    inss = _concurso(nome='INSS', categoria='Previdência', ano=2026, banca='Cebraspe')

    created = client.post('/apostilas', json={
        'title': 'Direito do Trabalho', 'url': 'https://example.org/dt.pdf',
        'description': 'Resumo', 'concurso_id': trt,
    }, headers=headers)
    assert created.status_code == 200
    body = created.json()
    assert body['message'] == 'Apostila created successfully'
    assert body['apostila']['concurso_id'] == trt
    client.post('/apostilas', json={'title': 'Previdenciário', 'url': 'https://example.org/p.pdf', 'concurso_id': inss}, headers=headers)
    client.post('/apostilas', json={'title': 'Português', 'url': 'https://example.org/pt.pdf'}, headers=headers)

    r = client.get('/apostilas', params={'concurso_id': trt}, headers=headers)
    assert r.status_code == 200
    items = r.json()['apostilas']
    assert [a['title'] for a in items] == ['Direito do Trabalho']
    assert items[0]['concursos'] == {
        'id': trt, 'nome': 'TRT 2ª Região', 'categoria': 'Tribunais', 'ano': 2025, 'banca': 'FCC',
    }

    everything = client.get('/apostilas', headers=headers).json()['apostilas']
    no_contest = [a for a in everything if a['title'] == 'Português']
    assert no_contest and no_contest[0]['concursos'] is None


def test_list_reports_store_failure(monkeypatch):
    from sqlalchemy.exc import OperationalError

    def broken(self, concurso_id=None):
        raise OperationalError('SELECT', {}, Exception('no such table: apostilas'))
    headers = _headers('apostila_failure')
    monkeypatch.setattr('concurso_prep.repositories.ApostilaRepository.list', broken)
    r = client.get('/apostilas', headers=headers)
    assert r.status_code == 500
    assert 'no such table' in r.json()['error']


def test_request_id_header_exists():
    r = client.get('/health')
    assert r.status_code == 200
    assert 'X-Request-ID' in r.headers

import unicodedata

from fastapi.testclient import TestClient
from studyforest.main import app

client = TestClient(app)


def _study():
    r = client.post('/api/studies', json={'nickname': 'n', 'study_name': 'Points', 'password': 'pw'})
    return r.json()['id']


def test_point_sum_tracks_awards_and_deletes():
    sid = _study()
    first = client.post(f'/api/points/study/{sid}', json={'point_content': 'a', 'point': 10}).json()
    client.post(f'/api/points/study/{sid}', json={'point_content': 'b', 'point': 3})
    assert client.get(f'/api/studies/{sid}').json()['point_sum'] == 13
    assert len(client.get(f'/api/points/study/{sid}').json()) == 2
    assert len(client.get('/api/points').json()) == 2

    assert client.delete(f"/api/points/study/{sid}/{first['id']}").status_code == 200
    assert client.get(f'/api/studies/{sid}').json()['point_sum'] == 3


def test_point_must_belong_to_study():
    sid = _study()
    other = _study()
    point = client.post(f'/api/points/study/{sid}', json={'point': 1}).json()
    assert client.delete(f"/api/points/study/{other}/{point['id']}").status_code == 404
    assert client.post('/api/points/study/999999', json={'point': 1}).status_code == 404


def test_repeated_emoji_increments_hit():
    sid = _study()
    first = client.post('/api/emojis', json={'study_id': sid, 'emoji_name': '🔥'})
    assert first.status_code == 201
    second = client.post('/api/emojis', json={'study_id': sid, 'emoji_name': '🔥'}).json()
    assert second['id'] == first.json()['id']
    assert second['emoji_hit'] == 2

    bumped = client.post(f"/api/emojis/{second['id']}/increment").json()
    assert bumped['emoji_hit'] == 3
    assert len(client.get(f'/api/emojis/study/{sid}').json()) == 1


def test_emoji_names_compare_after_normalization():
    sid = _study()
    composed = unicodedata.normalize('NFC', 'é')
    decomposed = unicodedata.normalize('NFD', 'é')
    client.post('/api/emojis', json={'study_id': sid, 'emoji_name': composed})
    r = client.post('/api/emojis', json={'study_id': sid, 'emoji_name': decomposed}).json()
    assert r['emoji_hit'] == 2


def test_emoji_errors():
    assert client.post('/api/emojis', json={'study_id': 999999, 'emoji_name': '🔥'}).status_code == 404
    assert client.post('/api/emojis/999999/increment').status_code == 404
    assert client.delete('/api/emojis/999999').status_code == 404
    sid = _study()
    emoji = client.post('/api/emojis', json={'study_id': sid, 'emoji_name': '🙂'}).json()
    assert client.delete(f"/api/emojis/{emoji['id']}").status_code == 200
    assert client.get(f'/api/emojis/study/{sid}').json() == []

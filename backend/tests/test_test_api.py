import json
import logging

from fastapi.testclient import TestClient
from sqlmodel import Session, select

from conftest import mc_item
from iqbank import models
from iqbank.database import engine
from iqbank.main import app

client = TestClient(app)


def test_questions_requires_token():
    r = client.get('/test/questions')
    assert r.status_code == 401
    assert 'error' in r.json()
    r2 = client.get('/test/questions', headers={'Authorization': 'Bearer invalid.token.here'})
    assert r2.status_code == 401


def test_questions_returns_bounded_sample_without_answers(make_user, load_questions):
    load_questions([mc_item(f"Question {i}") for i in range(25)], duration_minutes=15)
    _, headers = make_user('taker')
    r = client.get('/test/questions', headers=headers)
    assert r.status_code == 200
    data = r.json()
    assert data['durationMinutes'] == 15
    assert data['totalQuestions'] == 20
    ids = [q['id'] for q in data['questions']]
    assert len(ids) == 20 and len(set(ids)) == 20
    for q in data['questions']:
        assert 'correctAnswer' not in q
        assert all('isCorrect' not in o and 'is_correct' not in o for o in q['options'])


def test_questions_small_pool(make_user, load_questions):
    load_questions([mc_item("Only one")])
    _, headers = make_user('taker')
    data = client.get('/test/questions', headers=headers).json()
    assert data['totalQuestions'] == 1
    assert data['durationMinutes'] is None


def test_submit_single_correct_answer(make_user, load_questions):
    qid = load_questions([mc_item("If 2 + 3 = 10 ... 8 + 4 = ?", correct="D")])[0]
    user, headers = make_user('taker')
    r = client.post('/test/submit', json={'answers': [{'questionId': qid, 'selectedAnswer': 'D'}]}, headers=headers)
    assert r.status_code == 200
    result = r.json()['result']
    assert result['score'] == 1
    assert result['totalQuestions'] == 1
    assert result['iqScore'] == 150
    assert result['percentage'] == 100
    with Session(engine) as session:
        stored = session.get(models.TestResult, result['id'])
        assert stored.user_id == user.id
        answers = session.exec(select(models.UserAnswer).where(models.UserAnswer.test_result_id == stored.id)).all()
        assert [(a.question_id, a.selected_answer, a.is_correct) for a in answers] == [(qid, 'D', True)]


def test_submit_partial_and_unknown_questions(make_user, load_questions):
    ids = load_questions([mc_item("Q1", correct="A"), mc_item("Q2", correct="B")])
    _, headers = make_user('taker')
    answers = [
        {'questionId': ids[0], 'selectedAnswer': 'A'},
        {'questionId': 9999, 'selectedAnswer': 'A'},
        {'questionId': ids[1], 'selectedAnswer': 'C'},
        {'questionId': ids[1], 'selectedAnswer': 'B'},
    ]
    r = client.post('/test/submit', json={'answers': answers}, headers=headers)
    assert r.status_code == 200
    result = r.json()['result']
    assert result['score'] == 2
    assert result['totalQuestions'] == 4
    assert result['percentage'] == 50
    assert result['iqScore'] == 100


def test_submit_rejects_empty_or_malformed(make_user):
    _, headers = make_user('taker')
    r = client.post('/test/submit', json={'answers': []}, headers=headers)
    assert r.status_code == 400
    assert r.json()['error']
    r2 = client.post('/test/submit', json={'answers': [{'questionId': 1}]}, headers=headers)
    assert r2.status_code == 400
    assert r2.json()['details']
    r3 = client.post('/test/submit', json={}, headers=headers)
    assert r3.status_code == 400
    with Session(engine) as session:
        assert session.exec(select(models.TestResult)).all() == []


def test_history_is_newest_first(make_user, load_questions):
    qid = load_questions([mc_item("Q1", correct="A")])[0]
    _, headers = make_user('taker')
    _, other_headers = make_user('other')
    first = client.post('/test/submit', json={'answers': [{'questionId': qid, 'selectedAnswer': 'B'}]}, headers=headers).json()
    second = client.post('/test/submit', json={'answers': [{'questionId': qid, 'selectedAnswer': 'A'}]}, headers=headers).json()
    client.post('/test/submit', json={'answers': [{'questionId': qid, 'selectedAnswer': 'A'}]}, headers=other_headers)
    r = client.get('/test/history', headers=headers)
    assert r.status_code == 200
    assert [h['id'] for h in r.json()] == [second['result']['id'], first['result']['id']]


def test_result_detail_owner_admin_and_stranger(make_user, load_questions):
    qid = load_questions([mc_item("Q1", correct="C")])[0]
    _, owner = make_user('owner')
    _, stranger = make_user('stranger')
    _, admin = make_user('boss', role=models.Role.admin)
    rid = client.post('/test/submit', json={'answers': [{'questionId': qid, 'selectedAnswer': 'A'}]}, headers=owner).json()['result']['id']

    r = client.get(f'/test/result/{rid}', headers=owner)
    assert r.status_code == 200
    detail = r.json()
    assert detail['score'] == 0
    answer = detail['answers'][0]
    assert answer['selectedAnswer'] == 'A'
    assert answer['isCorrect'] is False
    assert answer['correctAnswer'] == 'C'
    assert [o['label'] for o in answer['options']] == ['A', 'B', 'C', 'D']

    assert client.get(f'/test/result/{rid}', headers=admin).status_code == 200
    forbidden = client.get(f'/test/result/{rid}', headers=stranger)
    assert forbidden.status_code == 403
    assert forbidden.json()['error']
    assert client.get('/test/result/424242', headers=owner).status_code == 404


def test_request_id_header_exists():
    r = client.get('/health')
    assert r.status_code == 200
    assert r.json()['status'] == 'ok'
    assert 'X-Request-ID' in r.headers


def test_request_id_is_echoed_and_logged(caplog):
    with caplog.at_level(logging.INFO, logger='iqbank.api'):
        r = client.get('/health', headers={'X-Request-ID': 'req-42'})
    assert r.headers['X-Request-ID'] == 'req-42'
    line = next(rec.getMessage() for rec in caplog.records if rec.getMessage().startswith('request_done'))
    record = json.loads(line.split(' ', 1)[1])
    assert record['request_id'] == 'req-42'
    assert record['path'] == '/health'
    assert record['method'] == 'GET'
    assert record['status_code'] == 200
    assert record['duration_ms'] >= 0

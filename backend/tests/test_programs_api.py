from fastapi.testclient import TestClient

from gradtracker.main import app

client = TestClient(app)


def _create(user, **fields):
    body = {'universityName': 'MIT'}
    body.update(fields)
    r = client.post('/api/programs', json=body, headers=user['headers'])
    assert r.status_code == 201, r.text
    return r.json()


def test_create_program_uses_caller_as_owner(make_user):
    alice = make_user('Alice')
    bob = make_user('Bob')
    program = _create(alice, userId=bob['id'], fieldOfStudy='CS', deadline='2026-12-01', status='applied')
    assert program['userId'] == alice['id']
    assert program['programId'] is not None
    assert program['fieldOfStudy'] == 'CS'
    assert program['deadline'] == '2026-12-01'
    assert program['status'] == 'Applied'


def test_create_requires_university_name(make_user):
    alice = make_user()
    blank = client.post('/api/programs', json={'universityName': '   '}, headers=alice['headers'])
    assert blank.status_code == 400
    missing = client.post('/api/programs', json={'notes': 'x'}, headers=alice['headers'])
    assert missing.status_code == 400
    assert 'universityName' in missing.json()['message']


def test_unknown_status_becomes_other(make_user):
    alice = make_user()
    assert _create(alice, status='Waitlisted')['status'] == 'Other'
    assert _create(alice)['status'] == 'Other'
    assert _create(alice, status=' IN_PROGRESS ')['status'] == 'In Progress'


def test_other_users_program_is_never_returned(make_user):
    alice = make_user('Alice')
    bob = make_user('Bob')
    program = _create(alice, notes='secret plans')
    url = f"/api/programs/{program['programId']}"

    for r in (
        client.get(url, headers=bob['headers']),
        client.put(url, json={'notes': 'hijacked'}, headers=bob['headers']),
        client.delete(url, headers=bob['headers']),
    ):
        assert r.status_code in (403, 404)
        assert 'secret plans' not in r.text

    still_there = client.get(url, headers=alice['headers'])
    assert still_there.status_code == 200
    assert still_there.json()['notes'] == 'secret plans'


def test_missing_program_is_not_found(make_user):
    alice = make_user()
    assert client.get('/api/programs/999999', headers=alice['headers']).status_code == 404
    assert client.put('/api/programs/999999', json={'notes': 'x'}, headers=alice['headers']).status_code == 404
    assert client.delete('/api/programs/999999', headers=alice['headers']).status_code == 404


def test_update_is_partial(make_user):
    alice = make_user()
    program = _create(alice, fieldOfStudy='Physics', notes='keep me', status='Applied')
    url = f"/api/programs/{program['programId']}"

    r = client.put(url, json={'status': 'accepted'}, headers=alice['headers'])
    assert r.status_code == 200
    assert r.json()['status'] == 'Accepted'
    assert r.json()['notes'] == 'keep me'
    assert r.json()['fieldOfStudy'] == 'Physics'
    assert r.json()['universityName'] == 'MIT'

    cleared = client.put(url, json={'notes': None}, headers=alice['headers'])
    assert cleared.status_code == 200
    assert cleared.json()['notes'] is None
    assert cleared.json()['fieldOfStudy'] == 'Physics'

    odd = client.put(url, json={'status': 'Waitlisted'}, headers=alice['headers'])
    assert odd.status_code == 200
    assert odd.json()['status'] == 'Other'


def test_update_cannot_blank_university_name(make_user):
    alice = make_user()
    program = _create(alice)
    url = f"/api/programs/{program['programId']}"
    assert client.put(url, json={'universityName': ''}, headers=alice['headers']).status_code == 400
    assert client.put(url, json={'universityName': None}, headers=alice['headers']).status_code == 400
    assert client.get(url, headers=alice['headers']).json()['universityName'] == 'MIT'


def test_list_is_scoped_filtered_and_paged(make_user):
    alice = make_user('Alice')
    bob = make_user('Bob')
    _create(alice, universityName='MIT', status='Applied', deadline='2026-01-15')
    _create(alice, universityName='Stanford', status='Accepted')
    _create(alice, universityName='Mit Media Lab', status='applied')
    _create(bob, universityName='MIT', status='Applied')

    everything = client.get('/api/programs', headers=alice['headers'])
    assert everything.status_code == 200
    assert len(everything.json()) == 3
    assert everything.headers['X-Total-Count'] == '3'
    assert {p['userId'] for p in everything.json()} == {alice['id']}

    mit = client.get('/api/programs', params={'universityName': 'mit'}, headers=alice['headers']).json()
    assert sorted(p['universityName'] for p in mit) == ['MIT', 'Mit Media Lab']

    applied = client.get('/api/programs', params={'status': 'APPLIED'}, headers=alice['headers']).json()
    assert len(applied) == 2

    by_date = client.get('/api/programs', params={'deadline': '2026-01-15'}, headers=alice['headers']).json()
    assert [p['universityName'] for p in by_date] == ['MIT']

    first_page = client.get('/api/programs', params={'page': 0, 'size': 2}, headers=alice['headers'])
    second_page = client.get('/api/programs', params={'page': 1, 'size': 2}, headers=alice['headers'])
    assert len(first_page.json()) == 2
    assert len(second_page.json()) == 1
    assert second_page.headers['X-Total-Count'] == '3'

    bob_view = client.get('/api/programs', params={'universityName': 'Stanford'}, headers=bob['headers']).json()
    assert bob_view == []


def test_bad_paging_is_rejected(make_user):
    alice = make_user()
    assert client.get('/api/programs', params={'page': -1}, headers=alice['headers']).status_code == 400
    assert client.get('/api/programs', params={'size': 0}, headers=alice['headers']).status_code == 400
    assert client.get('/api/programs', params={'size': 1000}, headers=alice['headers']).status_code == 400


def test_delete_program(make_user):
    alice = make_user()
    program = _create(alice)
    url = f"/api/programs/{program['programId']}"
    assert client.delete(url, headers=alice['headers']).status_code == 204
    assert client.get(url, headers=alice['headers']).status_code == 404


def test_dashboard_stats(make_user):
    alice = make_user()
    _create(alice, status='Applied')
    _create(alice, status='applied')
    _create(alice, status='Accepted')
    r = client.get('/api/dashboard/stats', headers=alice['headers'])
    assert r.status_code == 200
    body = r.json()
    assert body['totalPrograms'] == 3
    assert body['totalDocuments'] == 0
    assert body['statusCounts'] == {'Applied': 2, 'Accepted': 1}

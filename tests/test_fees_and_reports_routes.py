from datetime import date

from conftest import auth_header


def test_fee_settings_seeded_on_first_read(client, store):
    resp = client.get('/api/settings/fees', headers=auth_header())
    assert resp.status_code == 200
    methods = {m['name']: m['feeRate'] for m in resp.get_json()['methods']}
    assert methods == {'cash': 0.0, 'careem': 0.25, 'talabat': 0.25, 'visa': 0.007}


def test_fee_upsert(client, store):
    resp = client.post('/api/settings/fees', json={'name': 'Visa', 'feeRate': 0.015}, headers=auth_header())
    assert resp.status_code == 200
    assert resp.get_json()['method']['feeRate'] == 0.015

    resp = client.post('/api/settings/fees', json={'name': 'visa', 'feeRate': '0.02'}, headers=auth_header())
    assert resp.get_json()['method']['feeRate'] == 0.02
    assert len(store.payment_methods) == 1


def test_fee_rate_out_of_range(client):
    for rate in (-0.1, 1.5, 'abc'):
        resp = client.post('/api/settings/fees', json={'name': 'visa', 'feeRate': rate}, headers=auth_header())
        assert resp.status_code == 400


def test_fee_upsert_requires_unrestricted_role(client):
    resp = client.post('/api/settings/fees', json={'name': 'visa', 'feeRate': 0.01},
                       headers=auth_header(role='cashier'))
    assert resp.status_code == 403


def _seed_ledger(store):
    store.add_entry('A', [('1005', '100', '0'), ('4001', '0', '100')], branch_id=1, entry_date=date(2024, 5, 1))
    store.add_entry('B', [('5001', '40', '0'), ('1100', '0', '40')], branch_id=1, entry_date=date(2024, 5, 2))
    store.add_entry('C', [('1005', '50', '0'), ('4001', '0', '50')], branch_id=2, entry_date=date(2024, 5, 3))
    store.add_entry('D', [('6200', '30', '0'), ('1005', '0', '30')], branch_id=99, entry_date=date(2024, 5, 3))
    store.add_entry('E', [('6200', '10', '0'), ('1005', '0', '10')], branch_id=None, entry_date=date(2024, 6, 1))


def test_pl_consolidated_for_admin(client, store):
    _seed_ledger(store)
    body = client.get('/api/reports/pl', headers=auth_header()).get_json()
    summary = body['summary']
    assert summary['revenue'] == 150.0
    assert summary['expenses'] == 80.0
    assert summary['netProfit'] == 70.0
    assert summary['operatingExpenses'] == 40.0
    assert summary['operatingProfit'] == 110.0


def test_pl_date_range_and_branch_filter(client, store):
    _seed_ledger(store)
    body = client.get('/api/reports/pl?startDate=2024-05-01&endDate=2024-05-31&branchIds=1,99',
                      headers=auth_header()).get_json()
    assert body['period'] == {'start': '2024-05-01', 'end': '2024-05-31'}
    assert body['summary']['revenue'] == 100.0
    assert body['summary']['expenses'] == 70.0


def test_pl_restricted_role_sees_own_branch_only(client, store):
    _seed_ledger(store)
    body = client.get('/api/reports/pl?branchIds=1', headers=auth_header(role='cashier', branch_id=2)).get_json()
    assert body['summary']['revenue'] == 50.0
    assert body['summary']['expenses'] == 0.0


def test_pl_bad_date(client):
    resp = client.get('/api/reports/pl?startDate=05/01/2024', headers=auth_header())
    assert resp.status_code == 400

from fastapi.testclient import TestClient

from apps.filesystem.schema import Config
from apps.transfer.services import MAX_UPLOAD_SIZE
from main import create_app

TEST_DB_URL = 'sqlite://:memory:'


def make_client(config=None, auth=None):
    app = create_app(
        config=config or Config(storage={'type': 'test'}),
        auth=auth,
        db_url=TEST_DB_URL,
        gc_enabled=False,
    )
    return TestClient(app)


def upload(client, data=b'hello', content_type='text/plain'):
    resp = client.post('/fs/upload', content=data, headers={'Content-Type': content_type})
    assert resp.status_code == 200, resp.text
    return resp.json()['blobId']


def test_api_upload_commit_stat_list_delete():
    with make_client() as client:
        blob_id = upload(client)
        resp = client.post('/api/v1/fs/commit', json={'files': [{'path': 'docs/a.txt', 'blobId': blob_id}]})
        assert resp.status_code == 200, resp.text

        resp = client.get('/api/v1/fs/stat', params={'path': 'docs/a.txt'})
        assert resp.status_code == 200
        meta = resp.json()['data']
        assert meta['blobId'] == blob_id
        assert meta['contentType'] == 'text/plain'
        assert meta['size'] == 5

        resp = client.get('/api/v1/fs/list', params={'prefix': 'docs/', 'numItems': 10})
        page = resp.json()['data']
        assert [f['path'] for f in page['page']] == ['docs/a.txt']
        assert page['isDone'] is True
        assert page['continueCursor'] == 'docs/a.txt'

        resp = client.post('/api/v1/fs/delete', json={'path': 'docs/a.txt'})
        assert resp.status_code == 200
        assert client.get('/api/v1/fs/stat', params={'path': 'docs/a.txt'}).json()['data'] is None


def test_api_transact_conflict_is_409():
    with make_client() as client:
        blob_id = upload(client)
        client.post('/api/v1/fs/commit', json={'files': [{'path': 'a', 'blobId': blob_id}]})
        source = client.get('/api/v1/fs/stat', params={'path': 'a'}).json()['data']

        resp = client.post('/api/v1/fs/transact', json={'ops': [
            {'op': 'copy', 'source': source, 'dest': {'path': 'b'}},
            {'op': 'move', 'source': source, 'dest': {'path': 'b', 'basis': None}},
        ]})
        assert resp.status_code == 409
        body = resp.json()
        assert body['type'] == 'conflict'
        assert body['code'] == 'DEST_EXISTS'
        assert body['operationIndex'] == 2
        assert body['path'] == 'b'
        # the copy was rolled back with the failed move
        assert client.get('/api/v1/fs/stat', params={'path': 'b'}).json()['data'] is None

        resp = client.post('/api/v1/fs/transact', json={'ops': [
            {'op': 'setAttributes', 'source': source, 'attributes': {'expiresAt': '2031-01-01T00:00:00Z'}},
        ]})
        assert resp.status_code == 200, resp.text
        meta = client.get('/api/v1/fs/stat', params={'path': 'a'}).json()['data']
        assert meta['attributes']['expiresAt'].startswith('2031-01-01T00:00:00')


def test_api_commit_without_upload_is_400():
    with make_client() as client:
        resp = client.post('/api/v1/fs/commit', json={'files': [{'path': 'a', 'blobId': 'nope'}]})
        assert resp.status_code == 400
        assert 'nope' in resp.json()['detail']


def test_api_upload_too_large_is_413():
    with make_client() as client:
        resp = client.post('/fs/upload', content=b'x' * (MAX_UPLOAD_SIZE + 1))
        assert resp.status_code == 413


def test_api_download_redirect():
    with make_client() as client:
        blob_id = upload(client)
        resp = client.get(f'/fs/blobs/{blob_id}', params={'path': 'a.txt', 'w': '100'}, follow_redirects=False)
        assert resp.status_code == 302
        assert resp.headers['location'] == f'test://{blob_id}?w=100'
        assert resp.headers['cache-control'] == 'no-store'


def test_api_download_redirect_bunny_cache_control():
    config = Config(
        storage={'type': 'bunny', 'api_key': 'k', 'storage_zone_name': 'z', 'cdn_hostname': 'cdn.example.com'},
        download_url_ttl=3600,
    )
    with make_client(config=config) as client:
        resp = client.get('/fs/blobs/blob-1', follow_redirects=False)
        assert resp.status_code == 302
        assert resp.headers['location'] == 'https://cdn.example.com/blob-1'
        assert resp.headers['cache-control'] == 'private, max-age=3300'


def test_api_download_auth_callback():
    async def only_public(request, blob_id):
        return blob_id.startswith('public-')

    async def broken(request, blob_id):
        raise RuntimeError('auth backend down')

    with make_client(auth=only_public) as client:
        assert client.get('/fs/blobs/private-1', follow_redirects=False).status_code == 403
        assert client.get('/fs/blobs/public-1', follow_redirects=False).status_code == 302

    with make_client(auth=broken) as client:
        assert client.get('/fs/blobs/public-1', follow_redirects=False).status_code == 403


def test_api_handlers_see_database_opened_by_lifespan():
    # default settings database, handlers run outside the lifespan task
    app = create_app(config=Config(storage={'type': 'test'}), gc_enabled=False)
    with TestClient(app) as client:
        blob_id = upload(client)
        assert client.post('/api/v1/fs/commit', json={'files': [{'path': 'x', 'blobId': blob_id}]}).status_code == 200
        assert client.get('/api/v1/fs/stat', params={'path': 'x'}).json()['data']['blobId'] == blob_id

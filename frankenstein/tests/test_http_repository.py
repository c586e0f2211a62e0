"""
Tests for HttpApiSource against an httpx.MockTransport.
"""

import json

import httpx
import pytest

from frankenstein.errors import UnsupportedQueryError
from frankenstein.repositories.http_repository import HttpApiSource, build_params


class PhotoApi:
    """Records requests and serves a tiny photos resource"""

    def __init__(self):
        self.requests = []
        self.photos = {1: {'id': 1, 'car_id': 1, 'url': 'a.jpg'}}

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        parts = request.url.path.strip('/').split('/')

        if len(parts) == 1:
            if request.method == 'GET':
                car_ids = request.url.params.get_list('car_id')
                items = [p for p in self.photos.values() if not car_ids or str(p['car_id']) in car_ids]
                return httpx.Response(200, json={'items': items})
            if request.method == 'POST':
                body = json.loads(request.content)
                body['id'] = max(self.photos, default=0) + 1
                self.photos[body['id']] = body
                return httpx.Response(201, json=body)

        key = int(parts[1])
        if key not in self.photos:
            return httpx.Response(404, json={'detail': 'not found'})
        if request.method == 'GET':
            return httpx.Response(200, json=self.photos[key])
        if request.method == 'PATCH':
            self.photos[key].update(json.loads(request.content))
            return httpx.Response(200, json=self.photos[key])
        if request.method == 'DELETE':
            del self.photos[key]
            return httpx.Response(204)
        return httpx.Response(405)


@pytest.fixture
def api():
    return PhotoApi()


@pytest.fixture
def photos(api):
    client = httpx.AsyncClient(transport=httpx.MockTransport(api), base_url='http://api.test')
    return HttpApiSource(client, 'photos')


def test_build_params():
    assert build_params({'car_id': {'$in': [1, 2]}, 'url': 'a.jpg'}) == [
        ('car_id', 1), ('car_id', 2), ('url', 'a.jpg'),
    ]


def test_build_params_rejects_range():
    with pytest.raises(UnsupportedQueryError):
        build_params({'car_id': {'$gt': 1}})


@pytest.mark.asyncio
async def test_read_by_key(photos, api):
    assert await photos.read({'id': 1}) == [{'id': 1, 'car_id': 1, 'url': 'a.jpg'}]
    assert await photos.read({'id': 9}) == []
    assert api.requests[0].url.path == '/photos/1'


@pytest.mark.asyncio
async def test_read_list_with_options(photos, api):
    await photos.create({'car_id': 2, 'url': 'b.jpg'})

    records = await photos.read({'car_id': {'$in': [1, 2]}}, {'sort': '-url', 'limit': 10})

    assert len(records) == 2
    params = api.requests[-1].url.params
    assert params.get_list('car_id') == ['1', '2']
    assert params['sort'] == '-url'
    assert params['limit'] == '10'


@pytest.mark.asyncio
async def test_unsupported_query_sends_nothing(photos, api):
    with pytest.raises(UnsupportedQueryError):
        await photos.read({'car_id': {'$ne': 1}})
    assert api.requests == []


@pytest.mark.asyncio
async def test_create_update_delete(photos, api):
    created = await photos.create({'id': None, 'car_id': 3, 'url': 'c.jpg'})
    assert created['id'] == 2
    assert json.loads(api.requests[0].content) == {'car_id': 3, 'url': 'c.jpg'}

    assert await photos.update(2, {'url': 'd.jpg'}) == 1
    assert api.photos[2]['url'] == 'd.jpg'
    assert await photos.update(9, {'url': 'x.jpg'}) == 0

    # Non-key selection reads first, then deletes one by one
    assert await photos.delete({'car_id': 3}) == 1
    assert 2 not in api.photos


@pytest.mark.asyncio
async def test_server_error_raises():
    failing = HttpApiSource(
        httpx.AsyncClient(
            transport=httpx.MockTransport(lambda request: httpx.Response(500)),
            base_url='http://api.test',
        ),
        'photos',
    )

    with pytest.raises(httpx.HTTPStatusError):
        await failing.read({'car_id': 1})

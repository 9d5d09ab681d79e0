import asyncio

import pytest_asyncio
from aiohttp import web
from aiohttp.test_utils import TestServer


async def hello(request):
    return web.json_response({'message': 'hello'})


async def error(request):
    return web.Response(status=500, text='boom')


async def slow(request):
    await asyncio.sleep(float(request.query.get('delay', '0.3')))
    return web.Response(text='slow')


async def echo(request):
    data = await request.json()
    return web.json_response(data)


def create_app():
    app = web.Application()
    app.router.add_get('/api/hello/', hello)
    app.router.add_get('/error', error)
    app.router.add_get('/slow', slow)
    app.router.add_post('/echo', echo)
    return app


@pytest_asyncio.fixture
async def server():
    test_server = TestServer(create_app())
    await test_server.start_server()
    yield test_server
    await test_server.close()


@pytest_asyncio.fixture
async def hello_url(server):
    return str(server.make_url('/api/hello/'))

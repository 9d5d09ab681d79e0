import asyncio

import aiohttp
import pytest

from ramp_load_test.core import load_test_core
from ramp_load_test.core.load_test_checks import status_is
from ramp_load_test.core.load_test_core import (
    LoadTestResult,
    VirtualUser,
    VUController,
    make_request,
    run_load_test,
)
from ramp_load_test.core.load_test_stages import StageProfile

STATUS_200 = {'is status 200': status_is(200)}


@pytest.mark.asyncio
async def test_make_request_success(hello_url):
    async with aiohttp.ClientSession() as session:
        response = await make_request(session, hello_url)

    assert response.status == 200
    assert response.error is None
    assert response.elapsed >= 0
    assert 'hello' in response.text


@pytest.mark.asyncio
async def test_make_request_posts_json(server):
    async with aiohttp.ClientSession() as session:
        response = await make_request(session, str(server.make_url('/echo')), 'POST', {'Content': 'abc'})

    assert response.status == 200
    assert '"Content": "abc"' in response.text


@pytest.mark.asyncio
async def test_make_request_timeout(server):
    async with aiohttp.ClientSession() as session:
        response = await make_request(session, str(server.make_url('/slow?delay=1')), timeout=0.1)

    assert response.status == 0
    assert '请求超时' in response.error


@pytest.mark.asyncio
async def test_make_request_connection_refused(unused_tcp_port):
    async with aiohttp.ClientSession() as session:
        response = await make_request(session, f'http://127.0.0.1:{unused_tcp_port}/', timeout=2)

    assert response.status == 0
    assert '客户端错误' in response.error


@pytest.mark.asyncio
async def test_fixed_total_runs_exact_iterations(hello_url):
    result = await run_load_test(hello_url, concurrent=4, total=20, checks=STATUS_200, tick=0.01)

    stats = result.get_statistics()
    assert stats['total_requests'] == 20
    assert stats['iterations'] == 20
    assert stats['status_codes'] == {200: 20}
    assert stats['checks']['rate'] == 1
    assert stats['http_req_failed']['count'] == 0
    assert stats['vus_max'] <= 4


@pytest.mark.asyncio
async def test_fixed_duration(hello_url):
    result = await run_load_test(hello_url, concurrent=2, duration=0.3, sleep=0.05, tick=0.02)

    assert result.total_requests > 0
    assert result.end_time - result.start_time >= 0.3
    assert result.get_statistics()['vus_max'] == 2


@pytest.mark.asyncio
async def test_stages_ramp_up_and_down(hello_url):
    result = await run_load_test(
        hello_url,
        stages=[
            {'duration': 0.3, 'target': 3},
            {'duration': 0.3, 'target': 0},
        ],
        start_vus=0,
        checks=STATUS_200,
        sleep=0.02,
        tick=0.02,
        graceful_ramp_down=1,
    )

    stats = result.get_statistics()
    assert stats['vus_max'] == 3
    assert stats['checks']['fails'] == 0
    assert stats['interrupted_iterations'] == 0
    # 结束时虚拟用户数回落到 0
    assert result.vus_samples[-1][1] <= 1


@pytest.mark.asyncio
async def test_failed_checks_are_recorded_not_raised(server):
    result = await run_load_test(str(server.make_url('/error')), concurrent=2, total=6, checks=STATUS_200)

    stats = result.get_statistics()
    assert stats['checks']['items']['is status 200'] == {'passes': 0, 'fails': 6, 'rate': 0.0}
    assert stats['bad_count'] == 6
    assert stats['http_req_failed']['rate'] == 1.0
    assert stats['iterations'] == 6


@pytest.mark.asyncio
async def test_iteration_errors_do_not_stop_the_run():
    async def iteration(vu):
        raise RuntimeError('bad script')

    result = await run_load_test(concurrent=1, total=3, iteration=iteration)

    assert result.iterations == 0
    assert len(result.errors) == 3
    assert 'bad script' in result.errors[0]


@pytest.mark.asyncio
async def test_ramp_down_interrupts_after_grace_period():
    started = []

    async def iteration(vu):
        started.append(vu.id)
        await asyncio.sleep(5)

    result = await run_load_test(
        stages=[
            {'duration': 0.2, 'target': 2},
            {'duration': 0, 'target': 0},
            {'duration': 0.3, 'target': 0},
        ],
        start_vus=0,
        tick=0.01,
        graceful_ramp_down=0.05,
        iteration=iteration,
    )

    assert sorted(started) == [1, 2]
    assert result.interrupted_iterations == 2
    assert result.iterations == 0
    assert result.end_time - result.start_time < 2


@pytest.mark.asyncio
async def test_graceful_stop_lets_iterations_finish(hello_url):
    async def iteration(vu):
        await vu.get(hello_url)
        await asyncio.sleep(0.2)

    result = await run_load_test(concurrent=2, duration=0.1, tick=0.01, iteration=iteration)

    assert result.interrupted_iterations == 0
    assert result.iterations == result.total_requests == 2


@pytest.mark.asyncio
async def test_virtual_user_stop_finishes_current_iteration(hello_url):
    result = LoadTestResult()
    async with aiohttp.ClientSession() as session:
        vu = VirtualUser(1, session, result)

        async def iteration(vu):
            vu.stop()
            response = await vu.get(hello_url)
            vu.check(response, STATUS_200)

        await vu.run(iteration)

    assert vu.iteration == 1
    assert result.iterations == 1
    assert result.checks['is status 200'] == {'passes': 1, 'fails': 0}


@pytest.mark.asyncio
@pytest.mark.parametrize('kwargs', [
    {'concurrent': 1},
    {'concurrent': 1, 'total': 1, 'duration': 1},
    {'stages': [{'duration': '1s', 'target': 1}], 'total': 5},
    {'concurrent': 0, 'total': 5},
])
async def test_run_load_test_rejects_invalid_modes(kwargs):
    with pytest.raises(ValueError):
        await run_load_test('http://127.0.0.1/', **kwargs)


@pytest.mark.asyncio
async def test_run_load_test_requires_url_or_iteration():
    with pytest.raises(ValueError, match='url'):
        await run_load_test(total=1)


@pytest.mark.asyncio
async def test_scale_down_stops_newest_vus_first():
    async def iteration(vu):
        await asyncio.sleep(0.01)

    result = LoadTestResult()
    async with aiohttp.ClientSession() as session:
        controller = VUController(
            session, StageProfile([{'duration': 1, 'target': 3}]), iteration, result,
            graceful_ramp_down=5, graceful_stop=1,
        )
        controller.scale(3)
        controller.scale(1)

        assert [vu.id for vu in controller.active_vus] == [1]
        assert sorted(vu.id for vu in controller.vus if vu.stopping) == [2, 3]
        assert sorted(vu.id for vu in controller.pending_cancels) == [2, 3]

        # 已停止的虚拟用户结束后，对应的中断定时器被清理
        await asyncio.sleep(0.1)
        controller.scale(1)
        assert controller.pending_cancels == {}
        assert [vu.id for vu in controller.vus] == [1]

        await controller.stop_all()

    assert result.interrupted_iterations == 0


@pytest.mark.asyncio
async def test_connector_sized_to_twice_peak_vus(monkeypatch):
    connector_kwargs = []
    tcp_connector = aiohttp.TCPConnector

    def recording_connector(**kwargs):
        connector_kwargs.append(kwargs)
        return tcp_connector(**kwargs)

    monkeypatch.setattr(load_test_core.aiohttp, 'TCPConnector', recording_connector)

    async def iteration(vu):
        await asyncio.sleep(0.01)

    await run_load_test(
        stages=[{'duration': 0.05, 'target': 3}, {'duration': 0.05, 'target': 1}],
        start_vus=0,
        tick=0.01,
        iteration=iteration,
    )

    assert connector_kwargs == [{'limit': 6, 'limit_per_host': 6}]

#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
核心测试引擎
包含压测的核心逻辑：请求发送、虚拟用户、阶段调度、结果统计等
"""

import asyncio
import aiohttp
import json
import logging
import time
import statistics
import os
from typing import Awaitable, Callable, List, Dict, Optional, Tuple
from collections import defaultdict
from datetime import datetime

from .load_test_checks import Response, Check, run_checks
from .load_test_stages import StageProfile, constant_stages, parse_duration

logger = logging.getLogger(__name__)


def percentile(sorted_values: List[float], pct: float) -> float:
    """按下标取百分位数，sorted_values 需已排序且非空"""
    idx = int(len(sorted_values) * pct / 100)
    return sorted_values[min(idx, len(sorted_values) - 1)]


class LoadTestResult:
    """压测结果统计"""

    def __init__(self, t1: float = 1.0, t2: float = 3.0):
        self.response_times: List[float] = []
        self.fast_count = 0  # 快速请求（响应时间 < T1）
        self.slow_count = 0  # 慢请求（T1 ≤ 响应时间 ≤ T2）
        self.bad_count = 0   # 坏请求（响应时间 > T2 或超时/失败）
        self.failed_count = 0  # 传输失败或 4xx/5xx
        self.status_codes: Dict[int, int] = defaultdict(int)
        self.errors: List[str] = []
        self.checks: Dict[str, Dict[str, int]] = {}
        self.iterations = 0
        self.interrupted_iterations = 0
        self.vus_samples: List[Tuple[float, int]] = []
        self.threshold_results: List = []  # 由 runner 填充
        self.start_time: Optional[float] = None
        self.end_time: Optional[float] = None
        self.t1 = t1  # 快速阈值（默认1秒）
        self.t2 = t2  # 慢速阈值（默认3秒）

    @property
    def total_requests(self) -> int:
        return len(self.response_times)

    def add_result(self, response_time: float, status_code: int, error: Optional[str] = None):
        """添加一次请求结果"""
        self.response_times.append(response_time)

        # 三档统计逻辑
        if status_code == 200:
            # HTTP 200 成功请求，根据响应时间分类
            if response_time < self.t1:
                self.fast_count += 1  # fast: < T1
            elif response_time <= self.t2:
                self.slow_count += 1  # slow: T1 ~ T2
            else:
                self.bad_count += 1  # bad: > T2
        else:
            # HTTP 非200 或超时，视为 bad
            self.bad_count += 1
            if error:
                self.errors.append(error)

        if status_code == 0 or status_code >= 400:
            self.failed_count += 1

        self.status_codes[status_code] += 1

    def add_check(self, name: str, passed: bool, error: Optional[str] = None):
        """记录一次检查结果"""
        counts = self.checks.setdefault(name, {'passes': 0, 'fails': 0})
        if passed:
            counts['passes'] += 1
        else:
            counts['fails'] += 1
        if error:
            self.errors.append(error)

    def add_vus_sample(self, elapsed: float, vus: int):
        self.vus_samples.append((elapsed, vus))

    def get_statistics(self) -> Dict:
        """获取统计信息"""
        if not self.response_times:
            return {}

        sorted_times = sorted(self.response_times)
        total_requests = len(self.response_times)

        stats = {
            'total_requests': total_requests,
            'fast_count': self.fast_count,  # 快速请求数
            'slow_count': self.slow_count,   # 慢请求数
            'bad_count': self.bad_count,    # 坏请求数
            'fast_rate': self.fast_count / total_requests * 100,  # 快速请求率
            'slow_rate': self.slow_count / total_requests * 100,  # 慢请求率
            'bad_rate': self.bad_count / total_requests * 100,   # 坏请求率
            'status_codes': dict(self.status_codes),
            'response_time': {
                'min': sorted_times[0],
                'max': sorted_times[-1],
                'mean': statistics.mean(self.response_times),
                'median': statistics.median(self.response_times),
                'p50': percentile(sorted_times, 50),
                'p90': percentile(sorted_times, 90),
                'p95': percentile(sorted_times, 95),
                'p99': percentile(sorted_times, 99),
            },
            'http_req_failed': {
                'count': self.failed_count,
                'rate': self.failed_count / total_requests,
            },
            'iterations': self.iterations,
            'interrupted_iterations': self.interrupted_iterations,
            't1': self.t1,  # 快速阈值
            't2': self.t2   # 慢速阈值
        }

        if self.checks:
            passes = sum(c['passes'] for c in self.checks.values())
            fails = sum(c['fails'] for c in self.checks.values())
            stats['checks'] = {
                'passes': passes,
                'fails': fails,
                'rate': passes / (passes + fails) if passes + fails else 0,
                'items': {
                    name: {
                        'passes': c['passes'],
                        'fails': c['fails'],
                        'rate': c['passes'] / (c['passes'] + c['fails']),
                    }
                    for name, c in self.checks.items()
                },
            }

        if self.vus_samples:
            stats['vus_max'] = max(vus for _, vus in self.vus_samples)

        # 计算QPS
        if self.start_time and self.end_time:
            duration = self.end_time - self.start_time
            stats['duration'] = duration
            stats['qps'] = total_requests / duration if duration > 0 else 0

        return stats

    def generate_report_text(self, test_config: Optional[Dict] = None) -> str:
        """生成测试报告文本"""
        # 避免循环导入
        from .load_test_reporter import format_checks

        stats = self.get_statistics()
        lines = []

        lines.append("="*80)
        lines.append("压测报告")
        lines.append("="*80)
        lines.append(f"测试时间: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")

        if test_config:
            lines.append(f"\n【测试配置】")
            for key, value in test_config.items():
                lines.append(f"  {key}: {value}")

        if not stats:
            lines.append("\n没有完成任何请求")
            lines.append("="*80)
            return "\n".join(lines)

        lines.append(f"\n【请求统计】（三档分类）")
        t1 = stats['t1']
        t2 = stats['t2']
        lines.append(f"  总请求数: {stats['total_requests']}")
        lines.append(f"  快速请求 (fast): {stats['fast_count']} (响应时间 < {t1:.1f}秒) - {stats['fast_rate']:.2f}%")
        lines.append(f"  慢速请求 (slow): {stats['slow_count']} ({t1:.1f}秒 ≤ 响应时间 ≤ {t2:.1f}秒) - {stats['slow_rate']:.2f}%")
        lines.append(f"  坏请求 (bad): {stats['bad_count']} (响应时间 > {t2:.1f}秒 或超时/失败) - {stats['bad_rate']:.2f}%")
        lines.append(f"  失败请求: {stats['http_req_failed']['count']} - {stats['http_req_failed']['rate'] * 100:.2f}%")

        if 'checks' in stats:
            lines.append(f"\n【检查】")
            lines.extend(format_checks(stats))

        if self.threshold_results:
            lines.append(f"\n【阈值】")
            for threshold in self.threshold_results:
                lines.append(f"  {threshold!r}")

        lines.append(f"\n【虚拟用户】")
        lines.append(f"  迭代次数: {stats['iterations']}")
        lines.append(f"  中断迭代: {stats['interrupted_iterations']}")
        if 'vus_max' in stats:
            lines.append(f"  最大虚拟用户数: {stats['vus_max']}")

        if stats.get('duration'):
            lines.append(f"\n【性能统计】")
            lines.append(f"  测试时长: {stats['duration']:.2f} 秒")
            lines.append(f"  QPS: {stats['qps']:.2f}")

        lines.append(f"\n【响应时间统计】(单位: 秒)")
        rt = stats['response_time']
        lines.append(f"  最小值: {rt['min']:.3f}s")
        lines.append(f"  最大值: {rt['max']:.3f}s")
        lines.append(f"  平均值: {rt['mean']:.3f}s")
        lines.append(f"  中位数: {rt['median']:.3f}s")
        lines.append(f"  P50: {rt['p50']:.3f}s")
        lines.append(f"  P90: {rt['p90']:.3f}s")
        lines.append(f"  P95: {rt['p95']:.3f}s")
        lines.append(f"  P99: {rt['p99']:.3f}s")

        lines.append(f"\n【HTTP状态码统计】")
        for code, count in sorted(stats['status_codes'].items()):
            lines.append(f"  {code}: {count}")

        if self.errors:
            lines.append(f"\n【错误信息】(前50条)")
            for error in self.errors[:50]:
                lines.append(f"  {error}")
            if len(self.errors) > 50:
                lines.append(f"  ... 还有 {len(self.errors) - 50} 条错误")

        lines.append("="*80)

        return "\n".join(lines)

    def _report_path(self, output_dir: str, test_config: Optional[Dict], ext: str) -> str:
        # 根据测试模式生成文件名前缀
        mode_prefix = ""
        if test_config:
            if test_config.get('stages'):
                mode_prefix = "stages"
            elif test_config.get('total_requests'):
                mode_prefix = "total"
            elif test_config.get('duration'):
                mode_prefix = "duration"

            # 批量测试可能在同一秒内结束，用测试名区分
            if test_config.get('test_name'):
                mode_prefix = f"{test_config['test_name']}_{mode_prefix}".rstrip('_')

        timestamp = datetime.now().strftime('%Y%m%d_%H%M%S')
        if mode_prefix:
            filename = f"load_test_report_{mode_prefix}_{timestamp}.{ext}"
        else:
            filename = f"load_test_report_{timestamp}.{ext}"
        return os.path.join(output_dir, filename)

    def save_report(self, report_text: str, output_dir: str = "reports", test_config: Optional[Dict] = None) -> str:
        """保存报告到文件，返回文件路径"""
        os.makedirs(output_dir, exist_ok=True)
        filepath = self._report_path(output_dir, test_config, 'txt')

        with open(filepath, 'w', encoding='utf-8') as f:
            f.write(report_text)

        return filepath

    def save_report_json(self, test_config: Optional[Dict] = None, output_dir: str = "reports") -> str:
        """保存JSON格式的报告，返回文件路径"""
        os.makedirs(output_dir, exist_ok=True)
        filepath = self._report_path(output_dir, test_config, 'json')

        report_data = {
            'test_time': datetime.now().strftime('%Y-%m-%d %H:%M:%S'),
            'test_config': test_config or {},
            'statistics': self.get_statistics(),
            'errors': self.errors[:100]  # 只保存前100条错误
        }

        with open(filepath, 'w', encoding='utf-8') as f:
            json.dump(report_data, f, ensure_ascii=False, indent=2, default=str)

        return filepath


async def make_request(
    session: aiohttp.ClientSession,
    url: str,
    method: str = 'GET',
    payload: Optional[Dict] = None,
    timeout: float = 5
) -> Response:
    """发送单个请求，超时和连接错误不抛出，status 记为 0"""
    start_time = time.time()

    try:
        async with session.request(
            method,
            url,
            json=payload,
            timeout=aiohttp.ClientTimeout(total=timeout)
        ) as response:
            text = await response.text(errors='replace')
            return Response(
                url=url,
                method=method,
                status=response.status,
                elapsed=time.time() - start_time,
                headers=dict(response.headers),
                text=text
            )

    except asyncio.TimeoutError:
        error = f"请求超时 (>{timeout}s)"
    except aiohttp.ClientError as e:
        error = f"客户端错误: {str(e)}"

    return Response(url=url, method=method, elapsed=time.time() - start_time, error=error)


class VirtualUser:
    """虚拟用户：循环执行迭代函数，直到被要求停止"""

    def __init__(self, vu_id: int, session: aiohttp.ClientSession, result: LoadTestResult, timeout: float = 5):
        self.id = vu_id
        self.session = session
        self.result = result
        self.timeout = timeout
        self.iteration = 0
        self.in_iteration = False
        self.stop_event = asyncio.Event()
        self.task: Optional[asyncio.Task] = None

    @property
    def stopping(self) -> bool:
        return self.stop_event.is_set()

    def stop(self):
        """在当前迭代结束后停止"""
        self.stop_event.set()

    def cancel(self):
        """立即中断"""
        if self.task is not None and not self.task.done():
            if self.in_iteration:
                self.result.interrupted_iterations += 1
            self.task.cancel()

    async def request(self, method: str, url: str, payload: Optional[Dict] = None, timeout: Optional[float] = None) -> Response:
        """发送请求并记录结果"""
        response = await make_request(
            self.session, url, method, payload,
            timeout if timeout is not None else self.timeout
        )
        self.result.add_result(response.elapsed, response.status, response.error)
        return response

    async def get(self, url: str, **kwargs) -> Response:
        return await self.request('GET', url, **kwargs)

    async def post(self, url: str, payload: Optional[Dict] = None, **kwargs) -> Response:
        return await self.request('POST', url, payload=payload, **kwargs)

    def check(self, response: Response, checks: Optional[Dict[str, Check]]) -> bool:
        return run_checks(response, checks, self.result)

    async def run(self, iteration: Callable[['VirtualUser'], Awaitable[None]], reserve: Optional[Callable[[], bool]] = None):
        while not self.stop_event.is_set():
            if reserve is not None and not reserve():
                break
            self.in_iteration = True
            try:
                await iteration(self)
            except Exception as e:
                # 迭代出错只记录，继续下一次迭代
                logger.warning(f"VU {self.id} 第 {self.iteration} 次迭代出错: {e}")
                self.result.errors.append(f"VU {self.id} 迭代出错: {e}")
            else:
                self.result.iterations += 1
            finally:
                self.in_iteration = False
            self.iteration += 1


def build_default_iteration(
    url: str,
    checks: Optional[Dict[str, Check]] = None,
    sleep: float = 0.0,
    method: str = 'GET',
    payload: Optional[Dict] = None,
    timeout: Optional[float] = None
) -> Callable[[VirtualUser], Awaitable[None]]:
    """默认迭代：发送一次请求 -> 执行检查 -> 休眠"""
    async def iteration(vu: VirtualUser):
        response = await vu.request(method, url, payload=payload, timeout=timeout)
        vu.check(response, checks)
        if sleep:
            await asyncio.sleep(sleep)
    return iteration


class VUController:
    """按阶段曲线增减虚拟用户"""

    def __init__(
        self,
        session: aiohttp.ClientSession,
        profile: StageProfile,
        iteration: Callable[[VirtualUser], Awaitable[None]],
        result: LoadTestResult,
        timeout: float = 5,
        tick: float = 0.1,
        graceful_ramp_down: float = 30,
        graceful_stop: float = 30,
        total: Optional[int] = None
    ):
        self.session = session
        self.profile = profile
        self.iteration = iteration
        self.result = result
        self.timeout = timeout
        self.tick = tick
        self.graceful_ramp_down = graceful_ramp_down
        self.graceful_stop = graceful_stop
        self.total = total
        self.vus: List[VirtualUser] = []
        self._next_id = 1
        self._reserved = 0
        # 缩容中的虚拟用户 -> 宽限期后强制中断的定时器
        self.pending_cancels: Dict[VirtualUser, asyncio.TimerHandle] = {}

    @property
    def active_vus(self) -> List[VirtualUser]:
        return [vu for vu in self.vus if not vu.stopping and not vu.task.done()]

    @property
    def exhausted(self) -> bool:
        return self.total is not None and self._reserved >= self.total

    def _reserve(self) -> bool:
        """total 模式下为每次迭代预占名额，保证总迭代数不超过 total"""
        if self.total is None:
            return True
        if self._reserved >= self.total:
            return False
        self._reserved += 1
        return True

    def _spawn(self) -> VirtualUser:
        vu = VirtualUser(self._next_id, self.session, self.result, self.timeout)
        self._next_id += 1
        vu.task = asyncio.create_task(vu.run(self.iteration, self._reserve))
        self.vus.append(vu)
        return vu

    def scale(self, target: int):
        """将活跃虚拟用户数调整到 target"""
        # 清理已结束的虚拟用户及其中断定时器
        for vu in [vu for vu in self.pending_cancels if vu.task.done()]:
            self.pending_cancels.pop(vu).cancel()
        self.vus = [vu for vu in self.vus if not vu.task.done()]

        active = self.active_vus
        if len(active) < target:
            for _ in range(target - len(active)):
                self._spawn()
        elif len(active) > target:
            loop = asyncio.get_running_loop()
            # 优先停止最新启动的虚拟用户
            for vu in active[target:]:
                vu.stop()
                self.pending_cancels[vu] = loop.call_later(self.graceful_ramp_down, vu.cancel)

    async def run(self):
        """执行全部阶段，结束后优雅停止所有虚拟用户"""
        total_duration = self.profile.total_duration
        start = time.monotonic()

        try:
            while True:
                elapsed = time.monotonic() - start
                if elapsed >= total_duration:
                    break
                if self.exhausted and not self.vus_running():
                    break

                target = self.profile.target_at(elapsed)
                if not self.exhausted:
                    self.scale(target)
                self.result.add_vus_sample(elapsed, len(self.active_vus))

                await asyncio.sleep(min(self.tick, total_duration - elapsed))
        finally:
            await self.stop_all()

    def vus_running(self) -> bool:
        return any(not vu.task.done() for vu in self.vus)

    async def stop_all(self):
        for handle in self.pending_cancels.values():
            handle.cancel()
        self.pending_cancels = {}

        tasks = [vu.task for vu in self.vus if not vu.task.done()]
        for vu in self.vus:
            vu.stop()
        if not tasks:
            return

        done, pending = await asyncio.wait(tasks, timeout=self.graceful_stop)
        if pending:
            logger.info(f"{len(pending)} 个虚拟用户在 {self.graceful_stop}s 内未结束，强制中断")
            for vu in self.vus:
                if vu.task in pending:
                    vu.cancel()
            await asyncio.gather(*pending, return_exceptions=True)


async def run_load_test(
    url: Optional[str] = None,
    concurrent: int = 10,
    total: Optional[int] = None,
    duration: Optional[float] = None,
    payload: Optional[Dict] = None,
    timeout: float = 5,
    t1: float = 1.0,
    t2: float = 3.0,
    stages: Optional[List] = None,
    checks: Optional[Dict[str, Check]] = None,
    sleep: float = 0.0,
    method: str = 'GET',
    start_vus: int = 1,
    tick: float = 0.1,
    graceful_ramp_down: float = 30,
    graceful_stop: float = 30,
    iteration: Optional[Callable[[VirtualUser], Awaitable[None]]] = None
) -> LoadTestResult:
    """
    运行压测

    两种模式：
    - 阶段模式: 设置 stages，虚拟用户数按阶段曲线变化
    - 固定并发模式: concurrent 个虚拟用户，运行 total 次迭代或 duration 秒

    Raises:
        ValueError: 参数组合无效
    """
    if iteration is None and not url:
        raise ValueError("必须提供 url 或自定义 iteration")

    if stages:
        if total or duration:
            raise ValueError("stages 不能与 total 或 duration 同时设置")
        profile = StageProfile(stages, start_vus=start_vus)
    else:
        if total and duration:
            raise ValueError("total 和 duration 不能同时设置")
        if not total and not duration:
            raise ValueError("需要设置 stages、total 或 duration 之一")
        if concurrent < 1:
            raise ValueError(f"concurrent 必须大于0: {concurrent!r}")
        profile = constant_stages(concurrent, duration if duration else float('inf'))

    sleep = parse_duration(sleep)
    graceful_ramp_down = parse_duration(graceful_ramp_down)
    graceful_stop = parse_duration(graceful_stop)

    if iteration is None:
        iteration = build_default_iteration(url, checks, sleep, method, payload, timeout)

    result = LoadTestResult(t1=t1, t2=t2)

    limit = max(profile.max_target, 1) * 2
    connector = aiohttp.TCPConnector(limit=limit, limit_per_host=limit)
    async with aiohttp.ClientSession(connector=connector) as session:
        controller = VUController(
            session, profile, iteration, result,
            timeout=timeout,
            tick=tick,
            graceful_ramp_down=graceful_ramp_down,
            graceful_stop=graceful_stop,
            total=total
        )
        logger.info(
            f"开始压测: 阶段数={len(profile.stages)}, 最大虚拟用户数={profile.max_target}, "
            f"总时长={profile.total_duration}s"
        )
        result.start_time = time.time()
        await controller.run()

    result.end_time = time.time()
    return result

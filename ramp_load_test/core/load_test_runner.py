#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
测试运行器
提供高级测试流程控制
"""

import asyncio
import logging
from typing import Awaitable, Callable, List, Dict, Optional

from .load_test_checks import Check
from .load_test_core import run_load_test, LoadTestResult, VirtualUser
from .load_test_reporter import save_reports, generate_summary_report, save_summary_report
from .load_test_stages import parse_stages
from .load_test_thresholds import evaluate_thresholds

logger = logging.getLogger(__name__)


def build_test_config(config: Dict, test_name: str, checks: Optional[Dict[str, Check]] = None) -> Dict:
    """生成写入报告的测试配置（只保留可序列化的字段）"""
    test_config = {
        'test_name': test_name,
        'url': config.get('url'),
        'method': config.get('method', 'GET'),
        'timeout': config.get('timeout', 5),
        'sleep': config.get('sleep', 0),
        't1': config.get('t1', 1.0),
        't2': config.get('t2', 3.0),
    }

    if config.get('stages'):
        test_config['stages'] = [stage.to_dict() for stage in parse_stages(config['stages'])]
        test_config['start_vus'] = config.get('start_vus', 1)
    else:
        test_config['concurrent'] = config.get('concurrent', 10)
        test_config['total_requests'] = config.get('total')
        test_config['duration'] = config.get('duration')

    if checks:
        test_config['checks'] = list(checks)
    if config.get('thresholds'):
        test_config['thresholds'] = config['thresholds']

    return test_config


async def run_from_config(
    config: Dict,
    checks: Optional[Dict[str, Check]] = None,
    iteration: Optional[Callable[[VirtualUser], Awaitable[None]]] = None
) -> LoadTestResult:
    """按配置字典运行一次压测，并判定阈值"""
    result = await run_load_test(
        url=config.get('url'),
        concurrent=config.get('concurrent', 10),
        total=config.get('total'),
        duration=config.get('duration'),
        payload=config.get('payload'),
        timeout=config.get('timeout', 5),
        t1=config.get('t1', 1.0),
        t2=config.get('t2', 3.0),
        stages=config.get('stages'),
        checks=checks,
        sleep=config.get('sleep', 0),
        method=config.get('method', 'GET'),
        start_vus=config.get('start_vus', 1),
        tick=config.get('tick', 0.1),
        graceful_ramp_down=config.get('graceful_ramp_down', 30),
        graceful_stop=config.get('graceful_stop', 30),
        iteration=iteration
    )

    if config.get('thresholds'):
        result.threshold_results = evaluate_thresholds(result, config['thresholds'])
        for threshold in result.threshold_results:
            if not threshold.passed:
                logger.warning(f"阈值未通过: {threshold!r}")

    return result


async def run_single_test(
    config: Dict,
    checks: Optional[Dict[str, Check]] = None,
    iteration: Optional[Callable[[VirtualUser], Awaitable[None]]] = None,
    output_dir: str = 'reports',
    save_json: bool = False,
    test_name: str = "single_test"
) -> LoadTestResult:
    """
    运行单次测试

    Args:
        config: 测试配置（url、stages 或 concurrent + total/duration、timeout、t1、t2 等）
        checks: 响应检查 {检查名: 断言函数}
        iteration: 自定义迭代函数，默认发送一次请求并执行检查
        output_dir: 报告输出目录
        save_json: 是否保存JSON报告
        test_name: 测试名称

    Returns:
        LoadTestResult: 测试结果
    """
    test_config = build_test_config(config, test_name, checks)

    result = await run_from_config(config, checks, iteration)

    reports = save_reports(result, test_config, output_dir, save_json)
    logger.info(f"报告已保存: {reports['text_report']}")

    return result


async def run_batch_tests(
    test_configs: List[Dict],
    base_config: Dict,
    output_dir: str = 'reports',
    save_json: bool = False,
    cooldown: float = 5,
    checks: Optional[Dict[str, Check]] = None,
    batch_param: str = 'concurrent'
) -> List[Dict]:
    """
    运行批量测试

    Args:
        test_configs: 测试配置列表，每个配置包含并发、总数或阶段等参数
        base_config: 基础配置（URL、超时等）
        output_dir: 报告输出目录
        save_json: 是否保存JSON报告
        cooldown: 测试间隔冷却时间（秒）
        checks: 响应检查
        batch_param: 用于区分各次测试的参数名

    Returns:
        批量测试结果列表
    """
    batch_results = []
    total_tests = len(test_configs)

    for idx, test_config in enumerate(test_configs, 1):
        param_value = test_config.get(batch_param)
        logger.info(f"测试 {idx}/{total_tests}: {batch_param}={param_value}")

        # 合并配置
        config = {**base_config, **test_config}

        result = await run_from_config(config, checks)

        report_info = save_reports(
            result,
            build_test_config(config, f"batch_{idx}", checks),
            output_dir,
            save_json
        )

        stats = result.get_statistics()
        logger.info(
            f"QPS: {stats.get('qps', 0):.2f}, Fast: {stats.get('fast_rate', 0):.2f}%, "
            f"Bad: {stats.get('bad_rate', 0):.2f}%"
        )

        batch_results.append({
            'param_value': param_value,
            'result': result,
            'report_file': report_info['text_report'],
            'test_config': config
        })

        # 冷却时间（最后一次不需要等待）
        if idx < total_tests and cooldown:
            logger.info(f"等待 {cooldown} 秒后继续...")
            await asyncio.sleep(cooldown)

    return batch_results


async def run_sequential_tests(
    test_configs: List[Dict],
    base_config: Dict,
    output_dir: str = 'reports',
    save_json: bool = False,
    cooldown: float = 10,
    generate_summary: bool = True,
    checks: Optional[Dict[str, Check]] = None,
    batch_param: str = 'concurrent'
) -> List[Dict]:
    """
    运行序列测试（多阶段测试）

    与 run_batch_tests 的区别：
    - 自动生成汇总报告
    - 适用于阶段化测试

    Returns:
        测试结果列表
    """
    batch_results = await run_batch_tests(
        test_configs=test_configs,
        base_config=base_config,
        output_dir=output_dir,
        save_json=save_json,
        cooldown=cooldown,
        checks=checks,
        batch_param=batch_param
    )

    if generate_summary and len(batch_results) > 1:
        summary_text = generate_summary_report(
            batch_results,
            batch_param=batch_param,
            base_config=base_config,
            output_dir=output_dir
        )
        summary_file = save_summary_report(summary_text, output_dir)
        logger.info(f"汇总报告: {summary_file}")

    return batch_results

#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
命令行入口

示例:
    python -m ramp_load_test --url http://127.0.0.1:8000/api/hello/ \
        --stage 30s:20 --stage 1m:20 --stage 30s:0 --sleep 1
"""

import argparse
import asyncio
import logging
import sys
from typing import Dict, List, Optional

from .core.load_test_checks import status_checks
from .core.load_test_config import (
    load_config,
    validate_config,
    merge_config,
    get_default_config,
    normalize_expect_status,
)
from .core.load_test_runner import run_single_test
from .core.load_test_thresholds import thresholds_passed

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_THRESHOLD_FAILED = 1
EXIT_CONFIG_ERROR = 2


def parse_stage_arg(value: str) -> Dict:
    """解析 --stage 参数，格式 DURATION:TARGET，如 30s:20"""
    duration, sep, target = value.rpartition(':')
    if not sep or not duration:
        raise argparse.ArgumentTypeError(f"阶段格式应为 DURATION:TARGET: {value!r}")
    try:
        return {'duration': duration, 'target': int(target)}
    except ValueError:
        raise argparse.ArgumentTypeError(f"阶段目标必须是整数: {value!r}")


def parse_threshold_args(values: List[str]) -> Dict[str, List[str]]:
    """解析 --threshold 参数，格式 METRIC=EXPR，如 http_req_duration=p(95)<500"""
    thresholds: Dict[str, List[str]] = {}
    for value in values:
        metric, sep, expression = value.partition('=')
        if not sep or not metric or not expression:
            raise ValueError(f"阈值格式应为 METRIC=EXPR: {value!r}")
        thresholds.setdefault(metric.strip(), []).append(expression)
    return thresholds


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='ramp_load_test',
        description='阶段化 HTTP 压测工具'
    )
    parser.add_argument('-c', '--config', help='JSON 配置文件路径')
    parser.add_argument('--url', help='压测地址')
    parser.add_argument('--method', help='HTTP 方法 (默认 GET)')
    parser.add_argument('--stage', dest='stages', action='append', type=parse_stage_arg,
                        metavar='DURATION:TARGET', help='阶段，可重复，如 --stage 30s:20')
    parser.add_argument('--start-vus', type=int, help='初始虚拟用户数 (默认 1)')
    parser.add_argument('--concurrent', type=int, help='固定并发模式的并发数')
    mode = parser.add_mutually_exclusive_group()
    mode.add_argument('--duration', help='固定并发模式的持续时间，如 60s')
    mode.add_argument('--total', type=int, help='固定并发模式的总迭代数')
    parser.add_argument('--sleep', help='每次迭代后的休眠时间，如 1s')
    parser.add_argument('--timeout', type=float, help='请求超时时间（秒）')
    parser.add_argument('--t1', type=float, help='快速请求阈值（秒）')
    parser.add_argument('--t2', type=float, help='慢速请求阈值（秒）')
    parser.add_argument('--expect-status', type=int, action='append',
                        help='检查响应状态码，可重复 (默认 200)')
    parser.add_argument('--threshold', action='append', default=[], metavar='METRIC=EXPR',
                        help='阈值，可重复，如 --threshold "checks=rate>0.99"')
    parser.add_argument('--output-dir', help='报告输出目录')
    parser.add_argument('--json', action='store_true', default=None, help='同时保存 JSON 报告')
    parser.add_argument('-v', '--verbose', action='store_true', help='输出调试日志')
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    file_config = load_config(args.config) if args.config else {}

    try:
        cli_config = {
            'url': args.url,
            'method': args.method,
            'stages': args.stages,
            'start_vus': args.start_vus,
            'concurrent': args.concurrent,
            'duration': args.duration,
            'total': args.total,
            'sleep': args.sleep,
            'timeout': args.timeout,
            't1': args.t1,
            't2': args.t2,
            'output_dir': args.output_dir,
            'json': args.json,
            'expect_status': args.expect_status,
            'thresholds': parse_threshold_args(args.threshold) or None,
        }
        config = merge_config(file_config, cli_config, get_default_config())

        # 命令行指定的运行模式覆盖配置文件中的其他模式
        if args.stages is not None:
            config.pop('total', None)
            config.pop('duration', None)
        elif args.duration:
            config.pop('total', None)
            config.pop('stages', None)
        elif args.total:
            config.pop('duration', None)
            config.pop('stages', None)

        validate_config(config)
        if not config.get('stages') and not config.get('total') and not config.get('duration'):
            raise ValueError("需要设置 stages、total 或 duration 之一")

        checks = status_checks(normalize_expect_status(config.get('expect_status')))
    except ValueError as e:
        logger.error(f"配置验证失败: {e}")
        return EXIT_CONFIG_ERROR

    try:
        result = asyncio.run(run_single_test(
            config,
            checks=checks,
            output_dir=config['output_dir'],
            save_json=config['json'],
            test_name='cli'
        ))
    except KeyboardInterrupt:
        logger.warning("测试被用户中断")
        return EXIT_THRESHOLD_FAILED

    print(result.generate_report_text())

    if not thresholds_passed(result.threshold_results):
        return EXIT_THRESHOLD_FAILED
    return EXIT_OK


if __name__ == '__main__':
    sys.exit(main())

#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
冒烟测试
目标: 30秒内升到20个虚拟用户，保持1分钟，再30秒降到0；每次迭代 GET 一次并检查状态码为 200
"""

import asyncio
import logging

from ramp_load_test.core.load_test_core import VirtualUser
from ramp_load_test.core.load_test_runner import run_single_test

# ==================== 测试配置（硬编码） ====================
URL = 'http://172.17.0.1:8000/api/hello/'

STAGES = [
    {'duration': '30s', 'target': 20},
    {'duration': '1m', 'target': 20},
    {'duration': '30s', 'target': 0},
]

CHECKS = {
    'is status 200': lambda r: r.status == 200,
}

SLEEP = 1  # 每次迭代后休眠（秒）

CONFIG = {
    'url': URL,
    'stages': STAGES,
    'sleep': SLEEP,
    'timeout': 5,
    't1': 1.0,
    't2': 3.0,
}

# 输出目录
OUTPUT_DIR = 'reports/smoke'
SAVE_JSON = False

# =========================================================


async def default_iteration(vu: VirtualUser):
    """每个虚拟用户反复执行的迭代"""
    response = await vu.get(URL)
    vu.check(response, CHECKS)
    await asyncio.sleep(SLEEP)


async def main():
    """主函数"""
    print(f"\n{'='*80}")
    print("冒烟测试")
    print(f"{'='*80}")
    print(f"测试地址: {URL}")
    print(f"阶段: {STAGES}")
    print(f"输出目录: {OUTPUT_DIR}")
    print()

    try:
        result = await run_single_test(
            CONFIG,
            checks=CHECKS,
            iteration=default_iteration,
            output_dir=OUTPUT_DIR,
            save_json=SAVE_JSON,
            test_name="smoke_test"
        )

        stats = result.get_statistics()
        print(f"\n{'='*80}")
        print("冒烟测试完成！")
        print(f"{'='*80}")
        print(f"总请求数: {stats.get('total_requests', 0)}")
        print(f"QPS: {stats.get('qps', 0):.2f}")
        print(f"检查通过率: {stats.get('checks', {}).get('rate', 0) * 100:.2f}%")
        print(f"最大虚拟用户数: {stats.get('vus_max', 0)}")

    except KeyboardInterrupt:
        print("\n\n测试被用户中断")


if __name__ == '__main__':
    logging.basicConfig(level=logging.INFO)
    asyncio.run(main())

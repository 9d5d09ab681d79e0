#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
自定义配置测试
目标: 完全使用配置文件来启动测试

    python -m ramp_load_test.test_scripts.custom_config [配置文件]
"""

import asyncio
import logging
import os
import sys
from typing import Dict, List, Optional, Tuple

from ramp_load_test.core.load_test_checks import status_checks
from ramp_load_test.core.load_test_config import (
    load_config,
    validate_config,
    merge_config,
    get_default_config,
    normalize_expect_status,
)
from ramp_load_test.core.load_test_runner import run_single_test, run_sequential_tests

# ==================== 配置文件路径 ====================
script_dir = os.path.dirname(os.path.abspath(__file__))
package_dir = os.path.abspath(os.path.join(script_dir, '..'))
CONFIG_FILE = os.path.join(package_dir, 'load_test_config.json')

BATCH_PARAMS = ('concurrent', 'total', 'duration')

# =========================================================


def detect_batch_mode(config: Dict) -> Tuple[Optional[str], List]:
    """找出取值为数组（且多于一个值）的参数，返回 (参数名, 参数值列表)"""
    for param in BATCH_PARAMS:
        values = config.get(param)
        if isinstance(values, list) and len(values) > 1:
            return param, values
    return None, []


def _first(value, default):
    if isinstance(value, list):
        return value[0] if value else default
    return value if value is not None else default


def build_batch_configs(config: Dict, batch_param: str, batch_values: List) -> List[Dict]:
    """为每个参数值生成一份测试配置"""
    test_configs = []

    for param_value in batch_values:
        test_config = {batch_param: param_value}

        if batch_param == 'concurrent':
            # 检查total和duration
            if config.get('total') and not isinstance(config['total'], list):
                test_config['total'] = config['total']
            elif config.get('duration') and not isinstance(config['duration'], list):
                test_config['duration'] = config['duration']
            else:
                test_config['total'] = 500  # 默认值
        else:
            test_config['concurrent'] = _first(config.get('concurrent'), 10)

        test_configs.append(test_config)

    return test_configs


async def main(config_file: str = CONFIG_FILE):
    """主函数"""
    file_config = load_config(config_file)

    if not file_config:
        print(f"错误: 无法加载配置文件 {config_file}")
        return

    config = merge_config(file_config, {}, get_default_config())

    try:
        validate_config(config)
    except ValueError as e:
        print(f"配置验证失败: {e}")
        return

    print(f"\n{'='*80}")
    print("自定义配置测试")
    print(f"{'='*80}")
    print(f"配置文件: {config_file}")
    print()

    batch_param, batch_values = detect_batch_mode(config)

    # 对于自定义配置测试，使用 custom 子文件夹
    output_dir = os.path.join(config['output_dir'], 'custom')
    save_json = config['json']
    cooldown = config['batch_mode'].get('cooldown', 5)
    checks = status_checks(normalize_expect_status(config.get('expect_status')))

    try:
        if batch_param:
            print(f"批量测试模式")
            print(f"批量参数: {batch_param}")
            print(f"参数值: {batch_values}")
            print(f"输出目录: {output_dir}")
            print()

            # 只去掉批量参数本身，固定的 total/duration 保留在汇总报告中
            base_config = {k: v for k, v in config.items() if k not in (batch_param, 'stages')}
            await run_sequential_tests(
                test_configs=build_batch_configs(config, batch_param, batch_values),
                base_config=base_config,
                output_dir=output_dir,
                save_json=save_json,
                cooldown=cooldown,
                generate_summary=True,
                checks=checks,
                batch_param=batch_param
            )

        else:
            config = {k: _first(v, None) if k in BATCH_PARAMS else v for k, v in config.items()}
            if config.get('stages'):
                print(f"阶段模式: {config['stages']}")
            else:
                print(f"单次测试模式")
                print(f"并发数: {config['concurrent']}")
                if config.get('total'):
                    print(f"总请求数: {config['total']}")
                if config.get('duration'):
                    print(f"持续时间: {config['duration']}")
            print(f"输出目录: {output_dir}")
            print()

            result = await run_single_test(
                config,
                checks=checks,
                output_dir=output_dir,
                save_json=save_json,
                test_name="custom_test"
            )

            stats = result.get_statistics()
            print(f"\n{'='*80}")
            print("测试完成！")
            print(f"{'='*80}")
            print(f"QPS: {stats.get('qps', 0):.2f}")
            print(f"Fast率: {stats.get('fast_rate', 0):.2f}%")
            print(f"Slow率: {stats.get('slow_rate', 0):.2f}%")
            print(f"Bad率: {stats.get('bad_rate', 0):.2f}%")
            print(f"检查通过率: {stats.get('checks', {}).get('rate', 0) * 100:.2f}%")

    except KeyboardInterrupt:
        print("\n\n测试被用户中断")


if __name__ == '__main__':
    logging.basicConfig(level=logging.INFO)
    asyncio.run(main(sys.argv[1] if len(sys.argv) > 1 else CONFIG_FILE))

#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
配置管理模块
负责配置文件的加载、验证和合并
"""

import os
import json
import logging
from typing import Dict, List

from .load_test_stages import parse_duration, parse_stages
from .load_test_thresholds import validate_thresholds

logger = logging.getLogger(__name__)


def load_config(config_path: str) -> Dict:
    """
    加载配置文件

    Args:
        config_path: 配置文件路径

    Returns:
        配置字典，如果文件不存在或读取失败则返回空字典
    """
    if not os.path.exists(config_path):
        return {}

    try:
        with open(config_path, 'r', encoding='utf-8') as f:
            config = json.load(f)
    except (OSError, ValueError) as e:
        logger.warning(f"无法读取配置文件 {config_path}: {str(e)}")
        return {}

    if not isinstance(config, dict):
        logger.warning(f"配置文件 {config_path} 的顶层必须是对象")
        return {}

    return config


def _positive(config: Dict, key: str):
    value = config.get(key)
    if value is None:
        return
    if isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0:
        raise ValueError(f"{key} 必须是正数: {value!r}")


def _positive_int(key: str, value):
    if value is None:
        return
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise ValueError(f"{key} 必须是正整数: {value!r}")


def normalize_expect_status(value) -> List[int]:
    """
    统一 expect_status 的写法：200 或 [200, 204] 都转成列表，未设置时为 [200]

    Raises:
        ValueError: 不是 100-599 之间的整数
    """
    if value is None:
        return [200]
    codes = value if isinstance(value, list) else [value]
    if not codes:
        raise ValueError("expect_status 不能为空")
    for code in codes:
        if isinstance(code, bool) or not isinstance(code, int) or not 100 <= code <= 599:
            raise ValueError(f"expect_status 必须是 100-599 之间的整数: {code!r}")
    return codes


def validate_config(config: Dict) -> bool:
    """
    验证配置完整性

    Args:
        config: 配置字典

    Returns:
        验证是否通过

    Raises:
        ValueError: 当配置验证失败时
    """
    # 必需参数检查
    if not config.get('url'):
        raise ValueError("配置文件缺少必需参数: url")

    # 互斥参数检查
    if config.get('total') and config.get('duration'):
        raise ValueError("total 和 duration 不能同时设置")

    if config.get('stages') is not None:
        if config.get('total') or config.get('duration'):
            raise ValueError("stages 不能与 total 或 duration 同时设置")
        parse_stages(config['stages'])

    # 批量模式下 concurrent/total 可以是数组
    for key in ('concurrent', 'total'):
        values = config.get(key)
        for value in (values if isinstance(values, list) else [values]):
            _positive_int(key, value)

    for key in ('timeout', 't1', 't2', 'tick'):
        _positive(config, key)

    if config.get('t1') is not None and config.get('t2') is not None and config['t1'] > config['t2']:
        raise ValueError(f"t1 不能大于 t2: t1={config['t1']}, t2={config['t2']}")

    if config.get('duration') is not None:
        values = config['duration']
        for value in (values if isinstance(values, list) else [values]):
            parse_duration(value)

    for key in ('sleep', 'graceful_ramp_down', 'graceful_stop'):
        if config.get(key) is not None:
            parse_duration(config[key])

    start_vus = config.get('start_vus')
    if start_vus is not None and (isinstance(start_vus, bool) or not isinstance(start_vus, int) or start_vus < 0):
        raise ValueError(f"start_vus 必须是非负整数: {start_vus!r}")

    normalize_expect_status(config.get('expect_status'))

    if config.get('thresholds'):
        validate_thresholds(config['thresholds'])

    return True


def merge_config(
    file_config: Dict,
    cli_config: Dict,
    defaults: Dict
) -> Dict:
    """
    合并配置：默认值 -> 配置文件 -> 命令行参数

    Args:
        file_config: 从配置文件读取的配置
        cli_config: 命令行参数配置（值为 None 的项不覆盖）
        defaults: 默认配置

    Returns:
        合并后的配置
    """
    merged = defaults.copy()
    merged.update(file_config)
    merged.update({k: v for k, v in cli_config.items() if v is not None})
    return merged


def get_default_config() -> Dict:
    """
    获取默认配置

    Returns:
        默认配置字典
    """
    return {
        'concurrent': 10,
        'timeout': 5,
        't1': 1.0,
        't2': 3.0,
        'sleep': 0,
        'method': 'GET',
        'start_vus': 1,
        'graceful_ramp_down': 30,
        'graceful_stop': 30,
        'tick': 0.1,
        'output_dir': 'reports',
        'json': False,
        'batch_mode': {
            'cooldown': 5
        }
    }

#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
阶段配置模块
负责阶段时长解析、阶段列表解析，以及按时间计算目标虚拟用户数
"""

import re
from typing import List, Dict, Union, Optional


# 时长单位换算（秒）
_DURATION_UNITS = {
    'ms': 0.001,
    's': 1.0,
    'm': 60.0,
    'h': 3600.0,
}

_DURATION_PART = re.compile(r'(\d+(?:\.\d+)?)(ms|s|m|h)')


def parse_duration(value: Union[int, float, str]) -> float:
    """
    解析时长

    Args:
        value: 数字（秒）或字符串，如 "30s"、"1m"、"1m30s"、"500ms"

    Returns:
        时长（秒）

    Raises:
        ValueError: 格式错误或为负数
    """
    if isinstance(value, bool):
        raise ValueError(f"无效的时长: {value!r}")

    if isinstance(value, (int, float)):
        if value < 0:
            raise ValueError(f"时长不能为负数: {value!r}")
        return float(value)

    if not isinstance(value, str):
        raise ValueError(f"无效的时长: {value!r}")

    text = value.strip()
    if not text:
        raise ValueError("时长不能为空")

    # 纯数字字符串按秒处理
    try:
        seconds = float(text)
    except ValueError:
        pass
    else:
        if seconds < 0:
            raise ValueError(f"时长不能为负数: {value!r}")
        return seconds

    total = 0.0
    pos = 0
    for match in _DURATION_PART.finditer(text):
        if match.start() != pos:
            raise ValueError(f"无效的时长: {value!r}")
        total += float(match.group(1)) * _DURATION_UNITS[match.group(2)]
        pos = match.end()

    if pos == 0 or pos != len(text):
        raise ValueError(f"无效的时长: {value!r}")

    return total


class Stage:
    """单个阶段：在 duration 秒内把虚拟用户数线性调整到 target"""

    def __init__(self, duration: Union[int, float, str], target: int):
        self.duration = parse_duration(duration)
        if isinstance(target, bool) or not isinstance(target, int) or target < 0:
            raise ValueError(f"target 必须是非负整数: {target!r}")
        self.target = target

    def to_dict(self) -> Dict:
        return {'duration': self.duration, 'target': self.target}

    def __eq__(self, other):
        if not isinstance(other, Stage):
            return NotImplemented
        return self.duration == other.duration and self.target == other.target

    def __repr__(self):
        return f"Stage(duration={self.duration}, target={self.target})"


def parse_stages(raw: List[Union[Dict, Stage]]) -> List[Stage]:
    """
    解析阶段列表

    Args:
        raw: [{'duration': '30s', 'target': 20}, ...]

    Returns:
        Stage 列表

    Raises:
        ValueError: 列表为空或某个阶段无效
    """
    if not raw:
        raise ValueError("stages 不能为空")

    stages = []
    for idx, item in enumerate(raw, 1):
        if isinstance(item, Stage):
            stages.append(item)
            continue
        if not isinstance(item, dict) or 'duration' not in item or 'target' not in item:
            raise ValueError(f"第 {idx} 个阶段缺少 duration 或 target: {item!r}")
        try:
            stages.append(Stage(item['duration'], item['target']))
        except ValueError as e:
            raise ValueError(f"第 {idx} 个阶段无效: {e}") from e

    return stages


class StageProfile:
    """阶段化负载曲线"""

    def __init__(self, stages: List[Union[Dict, Stage]], start_vus: int = 1):
        if start_vus < 0:
            raise ValueError(f"start_vus 不能为负数: {start_vus!r}")
        self.stages = parse_stages(stages)
        self.start_vus = start_vus

    @property
    def total_duration(self) -> float:
        return sum(stage.duration for stage in self.stages)

    @property
    def max_target(self) -> int:
        return max([self.start_vus] + [stage.target for stage in self.stages])

    def stage_index_at(self, elapsed: float) -> Optional[int]:
        """返回 elapsed 时刻所处阶段的下标，全部阶段结束后返回 None"""
        offset = 0.0
        for idx, stage in enumerate(self.stages):
            if elapsed < offset + stage.duration:
                return idx
            offset += stage.duration
        return None

    def target_at(self, elapsed: float) -> int:
        """
        计算 elapsed 秒时的目标虚拟用户数

        阶段内从上一阶段的目标值线性插值到本阶段目标值，四舍五入取整（0.5 向上）
        """
        previous = self.start_vus
        offset = 0.0
        for stage in self.stages:
            if elapsed < offset + stage.duration:
                progress = (elapsed - offset) / stage.duration
                return int(previous + (stage.target - previous) * progress + 0.5)
            offset += stage.duration
            previous = stage.target
        return previous


def constant_stages(concurrent: int, duration: Union[int, float, str]) -> StageProfile:
    """固定并发曲线：以 concurrent 个虚拟用户启动并保持 duration"""
    return StageProfile([Stage(duration, concurrent)], start_vus=concurrent)

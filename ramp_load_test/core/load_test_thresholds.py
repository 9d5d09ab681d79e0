#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
阈值判定模块
根据压测结果判定通过/失败，如 {'http_req_duration': ['p(95)<500'], 'checks': ['rate>0.99']}
"""

import operator
import re
import statistics
from typing import Dict, List, Optional, Union

from .load_test_core import LoadTestResult, percentile


_OPERATORS = {
    '<': operator.lt,
    '<=': operator.le,
    '>': operator.gt,
    '>=': operator.ge,
    '==': operator.eq,
    '!=': operator.ne,
}

_EXPRESSION = re.compile(
    r'^\s*(rate|count|avg|min|max|med|p\(\s*\d+(?:\.\d+)?\s*\))\s*(<=|>=|==|!=|<|>)\s*(-?\d+(?:\.\d+)?)\s*$'
)

# 每个指标支持的聚合方式
METRICS = {
    'checks': ('rate', 'count'),
    'http_req_failed': ('rate', 'count'),
    'http_reqs': ('rate', 'count'),
    'iterations': ('rate', 'count'),
    'http_req_duration': ('avg', 'min', 'max', 'med', 'p'),
}


class ThresholdResult:
    """单条阈值的判定结果"""

    def __init__(self, metric: str, expression: str, value: Optional[float], passed: bool):
        self.metric = metric
        self.expression = expression
        self.value = value
        self.passed = passed

    def __repr__(self):
        mark = '✓' if self.passed else '✗'
        return f"{mark} {self.metric} {self.expression} (实际值: {self.value})"


def parse_expression(expression: str):
    """
    解析阈值表达式

    Returns:
        (聚合方式, 百分位 or None, 比较函数, 目标值)
    """
    match = _EXPRESSION.match(expression)
    if not match:
        raise ValueError(f"无效的阈值表达式: {expression!r}")

    aggregate, op, target = match.groups()
    pct = None
    if aggregate.startswith('p('):
        pct = float(aggregate[2:-1])
        if not 0 <= pct <= 100:
            raise ValueError(f"百分位超出范围: {expression!r}")
        aggregate = 'p'

    return aggregate, pct, _OPERATORS[op], float(target)


def _metric_value(result: LoadTestResult, metric: str, aggregate: str, pct: Optional[float]) -> Optional[float]:
    duration = None
    if result.start_time and result.end_time:
        duration = result.end_time - result.start_time

    if metric == 'checks':
        passes = sum(c['passes'] for c in result.checks.values())
        total = passes + sum(c['fails'] for c in result.checks.values())
        if aggregate == 'count':
            return total
        return passes / total if total else None

    if metric == 'http_req_failed':
        if aggregate == 'count':
            return result.failed_count
        return result.failed_count / result.total_requests if result.total_requests else None

    if metric in ('http_reqs', 'iterations'):
        count = result.total_requests if metric == 'http_reqs' else result.iterations
        if aggregate == 'count':
            return count
        return count / duration if duration else None

    # http_req_duration，单位毫秒
    if not result.response_times:
        return None
    times = sorted(t * 1000 for t in result.response_times)
    if aggregate == 'avg':
        return statistics.mean(times)
    if aggregate == 'min':
        return times[0]
    if aggregate == 'max':
        return times[-1]
    if aggregate == 'med':
        return statistics.median(times)
    return percentile(times, pct)


def _iter_expressions(thresholds: Dict[str, Union[str, List[str]]]):
    for metric, expressions in thresholds.items():
        if metric not in METRICS:
            raise ValueError(f"未知指标: {metric}")
        if isinstance(expressions, str):
            expressions = [expressions]
        for expression in expressions:
            aggregate, pct, compare, target = parse_expression(expression)
            if aggregate not in METRICS[metric]:
                raise ValueError(f"指标 {metric} 不支持聚合方式 {aggregate}")
            yield metric, expression.strip(), aggregate, pct, compare, target


def validate_thresholds(thresholds: Dict[str, Union[str, List[str]]]) -> bool:
    """只检查阈值配置是否合法，不需要压测结果"""
    for _ in _iter_expressions(thresholds):
        pass
    return True


def evaluate_thresholds(
    result: LoadTestResult,
    thresholds: Dict[str, Union[str, List[str]]]
) -> List[ThresholdResult]:
    """
    判定阈值

    Args:
        result: 压测结果
        thresholds: {指标名: 表达式 或 表达式列表}

    Returns:
        每条表达式的判定结果；指标没有数据时判定为失败

    Raises:
        ValueError: 未知指标、不支持的聚合方式或表达式无效
    """
    results = []
    for metric, expression, aggregate, pct, compare, target in _iter_expressions(thresholds):
        value = _metric_value(result, metric, aggregate, pct)
        passed = value is not None and compare(value, target)
        results.append(ThresholdResult(metric, expression, value, passed))

    return results


def thresholds_passed(threshold_results: List[ThresholdResult]) -> bool:
    return all(r.passed for r in threshold_results)

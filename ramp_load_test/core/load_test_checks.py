#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
响应检查模块
对单次响应执行一组命名断言，结果只记录不抛出
"""

import logging
from typing import Callable, Dict, List, Optional

logger = logging.getLogger(__name__)


class Response:
    """单次请求的响应快照（连接关闭后仍可读取）"""

    def __init__(
        self,
        url: str,
        method: str = 'GET',
        status: int = 0,
        elapsed: float = 0.0,
        headers: Optional[Dict[str, str]] = None,
        text: str = '',
        error: Optional[str] = None
    ):
        self.url = url
        self.method = method
        self.status = status  # 传输失败时为 0
        self.elapsed = elapsed
        self.headers = headers or {}
        self.text = text
        self.error = error

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    def __repr__(self):
        return f"<Response {self.method} {self.url} status={self.status} elapsed={self.elapsed:.3f}s>"


Check = Callable[[Response], bool]


def status_is(*codes: int) -> Check:
    """生成状态码断言，如 status_is(200)"""
    def predicate(response: Response) -> bool:
        return response.status in codes
    return predicate


def status_checks(codes: List[int]) -> Dict[str, Check]:
    """每个期望状态码一项检查，如 {'is status 200': status_is(200)}"""
    return {f"is status {code}": status_is(code) for code in codes}


def run_checks(response: Response, checks: Optional[Dict[str, Check]], result=None) -> bool:
    """
    执行检查

    Args:
        response: 响应快照
        checks: {检查名: 断言函数}
        result: LoadTestResult，不为空时记录每项检查结果

    Returns:
        全部通过返回 True
    """
    if not checks:
        return True

    all_passed = True
    for name, predicate in checks.items():
        error = None
        try:
            passed = bool(predicate(response))
        except Exception as e:
            # 断言函数自身出错按失败处理
            passed = False
            error = f"检查 '{name}' 出错: {e}"
            logger.debug(error)

        if not passed:
            all_passed = False
        if result is not None:
            result.add_check(name, passed, error)

    return all_passed

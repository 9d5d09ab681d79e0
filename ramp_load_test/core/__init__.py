#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
压测核心模块
提供可复用的压测功能
"""

from .load_test_checks import Response, run_checks, status_is
from .load_test_core import LoadTestResult, VirtualUser, VUController, make_request, run_load_test
from .load_test_stages import Stage, StageProfile, constant_stages, parse_duration, parse_stages
from .load_test_runner import run_from_config, run_single_test, run_batch_tests, run_sequential_tests
from .load_test_config import load_config, validate_config, merge_config, get_default_config
from .load_test_thresholds import evaluate_thresholds, thresholds_passed

__all__ = [
    'Response',
    'run_checks',
    'status_is',
    'LoadTestResult',
    'VirtualUser',
    'VUController',
    'make_request',
    'run_load_test',
    'Stage',
    'StageProfile',
    'constant_stages',
    'parse_duration',
    'parse_stages',
    'run_from_config',
    'run_single_test',
    'run_batch_tests',
    'run_sequential_tests',
    'load_config',
    'validate_config',
    'merge_config',
    'get_default_config',
    'evaluate_thresholds',
    'thresholds_passed',
]

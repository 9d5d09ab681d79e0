#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
阶段化 HTTP 压测工具
"""

__version__ = '0.1.0'

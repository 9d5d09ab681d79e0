#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
压测场景脚本
"""

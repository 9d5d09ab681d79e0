import json
import logging

import pytest

from ramp_load_test.core.load_test_config import (
    get_default_config,
    load_config,
    merge_config,
    normalize_expect_status,
    validate_config,
)


def test_load_config(tmp_path):
    path = tmp_path / 'config.json'
    path.write_text(json.dumps({'url': 'http://x', 'stages': [{'duration': '1s', 'target': 1}]}), encoding='utf-8')
    assert load_config(str(path))['url'] == 'http://x'


def test_load_config_missing_file(tmp_path):
    assert load_config(str(tmp_path / 'missing.json')) == {}


def test_load_config_invalid_json(tmp_path, caplog):
    path = tmp_path / 'config.json'
    path.write_text('{not json', encoding='utf-8')
    with caplog.at_level(logging.WARNING):
        assert load_config(str(path)) == {}
    assert '无法读取配置文件' in caplog.text


def test_load_config_requires_object(tmp_path):
    path = tmp_path / 'config.json'
    path.write_text('[1, 2]', encoding='utf-8')
    assert load_config(str(path)) == {}


def test_validate_config_accepts_smoke_profile():
    config = {
        'url': 'http://172.17.0.1:8000/api/hello/',
        'stages': [
            {'duration': '30s', 'target': 20},
            {'duration': '1m', 'target': 20},
            {'duration': '30s', 'target': 0},
        ],
        'sleep': 1,
    }
    assert validate_config({**get_default_config(), **config})


def test_validate_config_accepts_batch_values():
    assert validate_config({'url': 'http://x', 'concurrent': [1, 5, 10], 'total': 100})
    assert validate_config({'url': 'http://x', 'concurrent': 5, 'duration': ['10s', '20s']})


@pytest.mark.parametrize('config, message', [
    ({}, 'url'),
    ({'url': 'http://x', 'total': 10, 'duration': 5}, 'total 和 duration'),
    ({'url': 'http://x', 'stages': [{'duration': '1s', 'target': 1}], 'total': 10}, 'stages'),
    ({'url': 'http://x', 'stages': []}, 'stages 不能为空'),
    ({'url': 'http://x', 'concurrent': 0}, 'concurrent'),
    ({'url': 'http://x', 'concurrent': [1, -2]}, 'concurrent'),
    ({'url': 'http://x', 'timeout': -1}, 'timeout'),
    ({'url': 'http://x', 't1': 3.0, 't2': 1.0}, 't1 不能大于 t2'),
    ({'url': 'http://x', 'duration': 'forever'}, '无效的时长'),
    ({'url': 'http://x', 'sleep': '-1s'}, '无效的时长'),
    ({'url': 'http://x', 'start_vus': -1}, 'start_vus'),
    ({'url': 'http://x', 'thresholds': {'vus': 'max<10'}}, '未知指标'),
    ({'url': 'http://x', 'thresholds': {'checks': 'p(95)<1'}}, '不支持聚合方式'),
    ({'url': 'http://x', 'concurrent': 2.5, 'total': 1}, 'concurrent 必须是正整数'),
    ({'url': 'http://x', 'total': 1.5}, 'total 必须是正整数'),
    ({'url': 'http://x', 'concurrent': [1, 2.5], 'total': 1}, 'concurrent 必须是正整数'),
    ({'url': 'http://x', 'expect_status': '200'}, 'expect_status'),
    ({'url': 'http://x', 'expect_status': [200, 99]}, 'expect_status'),
    ({'url': 'http://x', 'expect_status': []}, 'expect_status 不能为空'),
])
def test_validate_config_errors(config, message):
    with pytest.raises(ValueError, match=message):
        validate_config(config)


def test_merge_config_order():
    defaults = {'concurrent': 10, 'timeout': 5, 'sleep': 0}
    file_config = {'concurrent': 20, 'sleep': 1}
    cli_config = {'concurrent': 30, 'timeout': None}

    merged = merge_config(file_config, cli_config, defaults)

    assert merged == {'concurrent': 30, 'timeout': 5, 'sleep': 1}
    assert defaults == {'concurrent': 10, 'timeout': 5, 'sleep': 0}


def test_normalize_expect_status():
    assert normalize_expect_status(None) == [200]
    assert normalize_expect_status(200) == [200]
    assert normalize_expect_status([200, 204]) == [200, 204]
    assert validate_config({'url': 'http://x', 'expect_status': 204})

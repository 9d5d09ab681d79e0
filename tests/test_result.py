import json

import pytest

from ramp_load_test.core.load_test_core import LoadTestResult, percentile


def build_result():
    result = LoadTestResult(t1=1.0, t2=3.0)
    result.add_result(0.5, 200)
    result.add_result(0.2, 200)
    result.add_result(2.0, 200)
    result.add_result(4.0, 200)
    result.add_result(0.1, 500)
    result.add_result(5.0, 0, '请求超时 (>5s)')
    result.add_check('is status 200', True)
    result.add_check('is status 200', True)
    result.add_check('is status 200', False)
    result.iterations = 6
    result.add_vus_sample(0.0, 1)
    result.add_vus_sample(0.1, 4)
    result.add_vus_sample(0.2, 2)
    result.start_time = 100.0
    result.end_time = 103.0
    return result


def test_three_tier_classification():
    result = build_result()
    assert result.fast_count == 2
    assert result.slow_count == 1
    # > t2, 非200, 超时
    assert result.bad_count == 3
    assert result.failed_count == 2
    assert result.errors == ['请求超时 (>5s)']


def test_statistics():
    stats = build_result().get_statistics()

    assert stats['total_requests'] == 6
    assert stats['fast_rate'] == pytest.approx(100 * 2 / 6)
    assert stats['bad_rate'] == pytest.approx(50.0)
    assert stats['status_codes'] == {200: 4, 500: 1, 0: 1}
    assert stats['response_time']['min'] == 0.1
    assert stats['response_time']['max'] == 5.0
    assert stats['response_time']['p50'] == 2.0
    assert stats['response_time']['p99'] == 5.0
    assert stats['http_req_failed'] == {'count': 2, 'rate': pytest.approx(2 / 6)}
    assert stats['checks']['rate'] == pytest.approx(2 / 3)
    assert stats['checks']['items']['is status 200']['fails'] == 1
    assert stats['iterations'] == 6
    assert stats['vus_max'] == 4
    assert stats['duration'] == pytest.approx(3.0)
    assert stats['qps'] == pytest.approx(2.0)


def test_empty_result_has_no_statistics():
    result = LoadTestResult()
    assert result.get_statistics() == {}
    assert '没有完成任何请求' in result.generate_report_text({'url': 'http://x'})


def test_percentile():
    values = [float(i) for i in range(1, 11)]
    assert percentile(values, 50) == 6.0
    assert percentile(values, 90) == 10.0
    assert percentile(values, 100) == 10.0
    assert percentile([1.5], 95) == 1.5


def test_report_text_sections():
    text = build_result().generate_report_text({'url': 'http://x/api/hello/', 'test_name': 'smoke'})

    assert '压测报告' in text
    assert 'url: http://x/api/hello/' in text
    assert '总请求数: 6' in text
    assert '✗ is status 200: 66.67%' in text
    assert '最大虚拟用户数: 4' in text
    assert 'QPS: 2.00' in text
    assert '请求超时 (>5s)' in text


def test_save_reports(tmp_path):
    result = build_result()
    config = {'url': 'http://x', 'stages': [{'duration': 1.0, 'target': 1}]}

    text_file = result.save_report(result.generate_report_text(config), str(tmp_path), config)
    json_file = result.save_report_json(config, str(tmp_path))

    assert 'load_test_report_stages_' in text_file
    assert text_file.endswith('.txt')
    with open(json_file, encoding='utf-8') as f:
        data = json.load(f)
    assert data['test_config'] == config
    assert data['statistics']['total_requests'] == 6
    assert data['errors'] == ['请求超时 (>5s)']

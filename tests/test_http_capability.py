"""
Tests for the plain HTTP cancellation capability.
"""

from unittest.mock import Mock, patch

import pytest
import requests

from subscout.unsubscribe.capability import HttpCancellationCapability, is_retryable_status


def response(status_code, text='ok'):
    mock = Mock()
    mock.status_code = status_code
    mock.text = text
    return mock


@pytest.fixture
def capability():
    return HttpCancellationCapability(timeout=10, user_agent='SubScout-Test/1.0', verify_ssl=True,
                                      snippet_limit=50)


class TestHttpGet:

    @patch('requests.get')
    def test_success(self, mock_get, capability):
        mock_get.return_value = response(200, 'You have been unsubscribed')

        result = capability.invoke('https://netflix.com/cancel')

        assert result.is_success
        assert result.status_code == 200
        assert result.body_snippet == 'You have been unsubscribed'
        args, kwargs = mock_get.call_args
        assert args[0] == 'https://netflix.com/cancel'
        assert kwargs['headers']['User-Agent'] == 'SubScout-Test/1.0'
        assert kwargs['timeout'] == 10
        assert kwargs['allow_redirects'] is True

    @patch('requests.get')
    def test_shorter_call_timeout_wins(self, mock_get, capability):
        mock_get.return_value = response(200)
        capability.invoke('https://netflix.com/cancel', timeout=2)
        assert mock_get.call_args.kwargs['timeout'] == 2

    @patch('requests.get')
    def test_body_is_truncated(self, mock_get, capability):
        mock_get.return_value = response(200, 'a' * 500)
        assert len(capability.invoke('https://netflix.com/cancel').body_snippet) == 50

    @pytest.mark.parametrize('status_code', [500, 502, 503, 429, 408])
    def test_retryable_status(self, capability, status_code):
        with patch('requests.get', return_value=response(status_code, 'busy')):
            result = capability.invoke('https://netflix.com/cancel')

        assert result.retryable is True
        assert result.is_success is False
        assert result.error == f'HTTP {status_code}'

    @pytest.mark.parametrize('status_code', [400, 403, 404, 410])
    def test_client_errors_are_final(self, capability, status_code):
        with patch('requests.get', return_value=response(status_code)):
            result = capability.invoke('https://netflix.com/cancel')

        assert result.retryable is False
        assert result.accepted is False

    @patch('requests.get')
    def test_timeout_is_retryable(self, mock_get, capability):
        mock_get.side_effect = requests.exceptions.Timeout('slow')

        result = capability.invoke('https://netflix.com/cancel')

        assert result.status_code is None
        assert result.retryable is True
        assert 'timed out' in result.error

    @patch('requests.get')
    def test_connection_error_is_retryable(self, mock_get, capability):
        mock_get.side_effect = requests.exceptions.ConnectionError('refused')

        result = capability.invoke('https://netflix.com/cancel')

        assert result.retryable is True
        assert 'Connection error' in result.error

    @patch('requests.get')
    def test_invalid_url_is_final(self, mock_get, capability):
        mock_get.side_effect = requests.exceptions.InvalidURL('bad url')

        result = capability.invoke('https://netflix.com/cancel')

        assert result.retryable is False
        assert 'Request error' in result.error


class TestHttpPost:

    @patch('requests.post')
    def test_one_click_body_without_form(self, mock_post, capability):
        mock_post.return_value = response(202)

        result = capability.invoke('https://netflix.com/cancel', 'POST')

        assert result.is_success
        assert mock_post.call_args.kwargs['data'] == {'List-Unsubscribe': 'One-Click'}

    @patch('requests.post')
    def test_captured_form_is_submitted(self, mock_post, capability):
        mock_post.return_value = response(200)

        capability.invoke('https://netflix.com/cancel', 'post', {'reason': 'too expensive'})

        assert mock_post.call_args.kwargs['data'] == {'reason': 'too expensive'}

    def test_unsupported_method(self, capability):
        result = capability.invoke('https://netflix.com/cancel', 'DELETE')

        assert result.retryable is False
        assert 'Unsupported HTTP method' in result.error


def test_retryable_status_codes():
    assert is_retryable_status(503)
    assert is_retryable_status(429)
    assert not is_retryable_status(404)
    assert not is_retryable_status(200)

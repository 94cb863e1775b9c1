"""Tests for error normalization, retries and polling."""

import pytest
from botocore.exceptions import ClientError, EndpointConnectionError, NoCredentialsError, ReadTimeoutError

from fakes import client_error
from stack_deploy.utils.errors import (
    CredentialError,
    DeploymentError,
    ErrorCategory,
    ErrorContext,
    ErrorSeverity,
    InternalError,
    NetworkError,
    PollTimeoutError,
    StackDeploymentError,
    error_handler,
)
from stack_deploy.utils.retry import RetryStrategy, poll_until


class TestErrorHandler:
    """Test conversion of foreign exceptions."""

    def test_deployment_errors_pass_through(self):
        error = StackDeploymentError('Stack failed')

        handled = error_handler.handle_exception(error, ErrorContext(stack_name='api'))

        assert handled is error
        assert handled.context.stack_name == 'api'
        assert handled.category == ErrorCategory.STACK

    def test_existing_stack_name_is_kept(self):
        error = StackDeploymentError('Stack failed', context=ErrorContext(stack_name='api'))

        handled = error_handler.handle_exception(error, ErrorContext(stack_name='other'))

        assert handled.context.stack_name == 'api'

    def test_known_client_error(self):
        error = ClientError(
            {
                'Error': {'Code': 'InsufficientCapabilitiesException', 'Message': 'Requires capabilities'},
                'ResponseMetadata': {'RequestId': 'req-1'}
            },
            'CreateChangeSet'
        )

        handled = error_handler.handle_exception(error, ErrorContext(stack_name='api'))

        assert handled.category == ErrorCategory.PERMISSION
        assert handled.message.endswith(': Requires capabilities')
        assert handled.context.request_id == 'req-1'
        assert handled.context.aws_operation == 'CreateChangeSet'
        assert handled.cause is error
        assert handled.suggestions

    def test_unknown_client_error(self):
        handled = error_handler.handle_exception(client_error('Weird', 'Something odd', 'DescribeStacks'))

        assert handled.category == ErrorCategory.AWS
        assert str(handled) == 'AWS Error (Weird): Something odd'

    def test_credential_errors_are_critical(self):
        handled = error_handler.handle_exception(NoCredentialsError())

        assert isinstance(handled, CredentialError)
        assert handled.severity == ErrorSeverity.CRITICAL

    def test_network_errors(self):
        handled = error_handler.handle_exception(ConnectionError('reset by peer'))

        assert isinstance(handled, NetworkError)
        assert 'reset by peer' in str(handled)

    def test_botocore_network_errors(self):
        error = EndpointConnectionError(endpoint_url='https://cloudformation.us-east-1.amazonaws.com/')

        handled = error_handler.handle_exception(error, ErrorContext(stack_name='api'))

        assert isinstance(handled, NetworkError)
        assert handled.cause is error
        assert 'https://cloudformation.us-east-1.amazonaws.com/' in str(handled)

    def test_anything_else(self):
        handled = error_handler.handle_exception(RuntimeError('docker daemon not running'))

        assert type(handled) is DeploymentError
        assert str(handled) == 'docker daemon not running'
        assert handled.category == ErrorCategory.UNKNOWN

    def test_user_message(self):
        error = InternalError(
            'Broken invariant',
            context=ErrorContext(stack_name='api', change_set_name='cs', operation='deploy'),
            suggestions=['Report a bug']
        )

        message = error.to_user_message()

        assert message.startswith('❌ CRITICAL: Broken invariant')
        assert 'Stack: api' in message
        assert 'Change set: cs' in message
        assert '1. Report a bug' in message


class TestRetryStrategy:
    """Test retries of read-only calls."""

    def test_transient_errors_are_retried(self):
        delays = []
        outcomes = [client_error('Throttling', 'Rate exceeded'), client_error('Throttling', 'Rate exceeded'), 'ok']

        def call():
            outcome = outcomes.pop(0)
            if isinstance(outcome, Exception):
                raise outcome
            return outcome

        strategy = RetryStrategy(base_delay=1.0, sleep=delays.append)

        assert strategy.execute_with_retry(call) == 'ok'
        assert len(delays) == 2
        assert 1.0 <= delays[0] <= 1.1
        assert 2.0 <= delays[1] <= 2.2

    def test_permanent_errors_are_raised_immediately(self):
        delays = []
        strategy = RetryStrategy(sleep=delays.append)

        def call():
            raise client_error('ValidationError', 'Stack with id api does not exist')

        with pytest.raises(ClientError):
            strategy.execute_with_retry(call)
        assert delays == []

    @pytest.mark.parametrize('error', [
        EndpointConnectionError(endpoint_url='https://cloudformation.us-east-1.amazonaws.com/'),
        ReadTimeoutError(endpoint_url='https://cloudformation.us-east-1.amazonaws.com/'),
    ])
    def test_botocore_network_errors_are_transient(self, error):
        outcomes = [error, 'ok']
        delays = []

        def call():
            outcome = outcomes.pop(0)
            if isinstance(outcome, Exception):
                raise outcome
            return outcome

        strategy = RetryStrategy(sleep=delays.append)

        assert strategy.is_transient(error) is True
        assert strategy.execute_with_retry(call) == 'ok'
        assert len(delays) == 1

    def test_retries_are_bounded(self):
        calls = []
        strategy = RetryStrategy(max_retries=2, sleep=lambda _: None)

        def call():
            calls.append(1)
            raise ConnectionError('reset')

        with pytest.raises(ConnectionError):
            strategy.execute_with_retry(call)
        assert len(calls) == 3

    def test_delay_is_capped(self):
        strategy = RetryStrategy(base_delay=1.0, max_delay=4.0)

        assert strategy.delay(10) <= 4.4


class TestPollUntil:
    """Test bounded polling."""

    def test_returns_first_terminal_observation(self):
        observations = iter(['CREATE_IN_PROGRESS', 'CREATE_IN_PROGRESS', 'CREATE_COMPLETE'])
        waits = []

        result = poll_until(
            lambda: next(observations),
            lambda status: not status.endswith('_IN_PROGRESS'),
            interval=5,
            timeout=60,
            description='stack',
            sleep=waits.append
        )

        assert result == 'CREATE_COMPLETE'
        assert waits == [5, 5]

    def test_times_out(self):
        now = [0.0]

        def sleep(seconds):
            now[0] += seconds

        with pytest.raises(PollTimeoutError) as exc_info:
            poll_until(
                lambda: 'UPDATE_IN_PROGRESS',
                lambda status: False,
                interval=10,
                timeout=30,
                description='stack api to stabilize',
                context=ErrorContext(stack_name='api'),
                sleep=sleep,
                clock=lambda: now[0]
            )

        assert str(exc_info.value) == 'Timed out after 30s waiting for stack api to stabilize'
        assert exc_info.value.context.stack_name == 'api'
